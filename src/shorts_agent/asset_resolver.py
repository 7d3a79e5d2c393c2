"""Visual asset resolution: candidate discovery, scoring, validation and assignment.

Candidate ranking is pure and deterministic (``resolve_candidates``); only
``AssetResolver`` touches the network, to probe reachability and push
accepted images through the CDN transform.
"""

import asyncio
import hashlib
import html
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, unquote, urlsplit

import aiohttp
from PIL import Image

from models.image import ImageResult, Reachability, VisualAsset
from models.job import ratio_orientation
from models.segment import Segment
from services.image_cdn import ImageCDNError, ImageCDNService
from services.image_sources.base import BROWSER_HEADERS, download_image_url
from shorts_agent.context import JobContext

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 24
MAX_PER_HOST = 3
DEFAULT_MAX_IMAGES = 8
PROBE_TIMEOUT_SECONDS = 8.0
PROBE_RANGE = "bytes=0-8191"
MAX_TOPIC_MATCH_BONUS = 4
LOCAL_MAX_EDGE = 2560

THUMBNAIL_HOSTS = ("gstatic.com", "googleusercontent.com", "ggpht.com")
IMAGE_EXTENSION_RE = re.compile(r"\.(jpe?g|png|webp|avif)$", re.IGNORECASE)
TEXTY_FILENAME_RE = re.compile(
    r"(logo|banner|poster|icon|sprite|avatar|infographic|text)", re.IGNORECASE
)
OFF_TOPIC_TITLE_RE = re.compile(
    r"\b(stock|wallpaper|illustration|clipart|clip art|vector|template|mockup)\b",
    re.IGNORECASE,
)

# Wire services and major outlets whose images are usually clean editorial photos
KNOWN_GOOD_DOMAINS = (
    "reuters.com",
    "apnews.com",
    "bbc.co.uk",
    "bbci.co.uk",
    "nytimes.com",
    "cnn.com",
    "theguardian.com",
    "guim.co.uk",
    "espncdn.com",
    "washingtonpost.com",
    "npr.org",
    "aljazeera.com",
)

STOPWORDS = frozenset(
    {
        "the", "and", "for", "with", "from", "this", "that", "into", "over",
        "after", "about", "what", "why", "how", "are", "was", "were", "will",
        "new", "its", "his", "her", "their", "you", "your", "has", "have", "vs",
    }
)

TOPIC_TOKEN_ALIASES = {
    "oscar": ("oscars", "academy awards", "academy award"),
    "oscars": ("oscar", "academy awards", "academy award"),
    "grammy": ("grammys", "grammy awards"),
    "grammys": ("grammy", "grammy awards"),
    "emmy": ("emmys", "emmy awards"),
    "emmys": ("emmy", "emmy awards"),
    "golden globe": ("golden globes",),
    "golden globes": ("golden globe",),
    "nba": ("national basketball association",),
    "nfl": ("national football league",),
}


@dataclass
class SourceHints:
    """Raw image leads for one topic, in discovery order."""

    story_images: list[str] = field(default_factory=list)
    search_results: list[ImageResult] = field(default_factory=list)


def normalize_remote_url(url: Optional[str]) -> Optional[str]:
    """Clean a scraped image URL, or return None if it cannot be fetched over http(s)."""
    if not url:
        return None
    s = html.unescape(str(url)).strip().strip("'\"").rstrip(".,;)]'\"")
    if s.startswith("//"):
        s = "https:" + s
    if s.lower().startswith(("data:", "blob:")):
        return None
    s = s.replace(" ", "%20")
    parts = urlsplit(s)
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return s


def dedupe_key(url: str) -> str:
    """Lowercase host+path identity, ignoring query strings and ``www.``."""
    parts = urlsplit(url)
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    return f"{host}{parts.path.lower().rstrip('/')}"


def _host(url: str) -> str:
    host = urlsplit(url).hostname or ""
    return host.lower()


def is_thumbnail_host(host: str) -> bool:
    return any(host == h or host.endswith("." + h) for h in THUMBNAIL_HOSTS)


def infer_aspect_from_url(url: str) -> str:
    """Orientation hinted by ``w``/``h`` query params or a ``WxH`` path fragment."""
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    w = h = None
    try:
        if re.fullmatch(r"\d{2,4}", (query.get("w") or [""])[0]):
            w = int(query["w"][0])
        if re.fullmatch(r"\d{2,4}", (query.get("h") or [""])[0]):
            h = int(query["h"][0])
    except (KeyError, ValueError):
        w = h = None
    if not w or not h:
        m = re.search(r"(\d{3,4})x(\d{3,4})", parts.path)
        if m:
            w, h = int(m.group(1)), int(m.group(2))
    return aspect_from_size(w or 0, h or 0)


def aspect_from_size(width: int, height: int) -> str:
    if not width or not height:
        return "unknown"
    r = width / height
    if r >= 1.1:
        return "landscape"
    if r <= 0.9:
        return "portrait"
    return "square"


def tokenize_label(text: str) -> list[str]:
    """Lowercase topic tokens without stopwords, digits or one-letter fragments."""
    raw = re.sub(r"[^a-z0-9]+", " ", str(text or "").lower()).split()
    tokens = []
    for tok in raw:
        if len(tok) < 2 or tok.isdigit() or tok in STOPWORDS or tok in tokens:
            continue
        tokens.append(tok)
    return tokens


def min_topic_token_matches(tokens: list[str]) -> int:
    if not tokens:
        return 0
    if len(tokens) >= 3:
        return 2
    return 1


def topic_match_count(tokens: list[str], fields: list[str]) -> int:
    """Number of topic tokens present (directly or by alias) in ``fields``."""
    if not tokens:
        return 0
    hay = " " + " ".join(
        " ".join(re.sub(r"[^a-z0-9]+", " ", unquote(str(f or "")).lower()).split())
        for f in fields
    ) + " "
    count = 0
    for tok in tokens:
        phrases = (tok,) + TOPIC_TOKEN_ALIASES.get(tok, ())
        if any(f" {p} " in hay for p in phrases):
            count += 1
    return count


def score_image(
    url: str,
    target_orientation: str,
    is_story_image: bool = False,
    width: int = 0,
    height: int = 0,
    topic_matches: int = 0,
) -> tuple[float, str]:
    """Heuristic quality score for a candidate URL; returns (score, aspect)."""
    score = 2.0 if is_story_image else 0.0
    parts = urlsplit(url)
    host = _host(url)

    if not is_thumbnail_host(host):
        score += 4
    if IMAGE_EXTENSION_RE.search(parts.path):
        score += 2

    w_param = (parse_qs(parts.query).get("w") or [""])[0]
    if re.fullmatch(r"\d{2,4}", w_param):
        w = int(w_param)
        if w >= 1400:
            score += 3
        elif w >= 1000:
            score += 2
        elif w >= 600:
            score += 1

    megapixels = (width * height) / 1_000_000
    if megapixels >= 2:
        score += 2
    elif megapixels >= 0.8:
        score += 1

    aspect = aspect_from_size(width, height)
    if aspect == "unknown":
        aspect = infer_aspect_from_url(url)
    if aspect == target_orientation:
        score += 3
    elif aspect == "square":
        score += 1
    elif aspect != "unknown":
        score -= 2

    if any(host == d or host.endswith("." + d) for d in KNOWN_GOOD_DOMAINS):
        score += 1

    score += min(MAX_TOPIC_MATCH_BONUS, topic_matches)
    return score, aspect


def resolve_candidates(
    topic: str,
    aspect_ratio: str,
    source_hints: SourceHints,
    max_candidates: int = MAX_CANDIDATES,
    max_per_host: int = MAX_PER_HOST,
) -> list[VisualAsset]:
    """Filter, deduplicate and rank raw image leads for a topic.

    Pure and deterministic: equal scores keep discovery order.
    """
    target = ratio_orientation(aspect_ratio)
    topic_tokens = tokenize_label(topic)
    required = min_topic_token_matches(topic_tokens)

    leads: list[tuple[str, str, str, int, int]] = [
        (url, "story", "", 0, 0) for url in source_hints.story_images
    ]
    leads.extend(
        (r.download_url, "search", r.title, r.width, r.height)
        for r in source_hints.search_results
    )

    seen: set[str] = set()
    per_host: Counter = Counter()
    assets: list[VisualAsset] = []

    for discovery_index, (raw_url, origin, title, width, height) in enumerate(leads):
        url = normalize_remote_url(raw_url)
        if not url:
            continue
        key = dedupe_key(url)
        if key in seen:
            continue
        host = _host(url)
        if is_thumbnail_host(host):
            continue
        filename = unquote(urlsplit(url).path.rsplit("/", 1)[-1])
        if TEXTY_FILENAME_RE.search(filename):
            continue
        if title and OFF_TOPIC_TITLE_RE.search(title):
            continue
        if per_host[host] >= max_per_host:
            continue

        matches = topic_match_count(topic_tokens, [title, urlsplit(url).path])
        if origin != "story" and matches < required:
            continue

        seen.add(key)
        per_host[host] += 1
        score, aspect = score_image(
            url,
            target,
            is_story_image=origin == "story",
            width=width,
            height=height,
            topic_matches=matches,
        )
        assets.append(
            VisualAsset(
                source_url=url,
                score=score,
                aspect=aspect,
                title=title,
                width=width,
                height=height,
                origin=origin,
                discovery_index=discovery_index,
            )
        )
        if len(assets) >= max_candidates:
            break

    assets.sort(key=lambda a: (-a.score, a.discovery_index))
    logger.info(
        f"[Assets] {len(assets)} candidates for '{topic}' "
        f"({len(leads)} leads, {required} token match(es) required)"
    )
    return assets


def plan_asset_indexes(segments: list[Segment], asset_count: int) -> list[Segment]:
    """Assign an asset index to every segment.

    With enough assets every segment gets a distinct one, keeping valid
    indexes the script already proposed. Otherwise assets are cycled so no
    two adjacent segments share one (when more than one asset exists).
    """
    if asset_count <= 0 or not segments:
        return segments

    def proposed(seg: Segment) -> Optional[int]:
        idx = seg.asset_index
        if isinstance(idx, int) and 0 <= idx < asset_count:
            return idx
        return None

    if asset_count >= len(segments):
        used: set[int] = set()
        planned: list[Optional[int]] = [None] * len(segments)
        for i, seg in enumerate(segments):
            idx = proposed(seg)
            if idx is not None and idx not in used:
                planned[i] = idx
                used.add(idx)
        nxt = 0
        for i in range(len(segments)):
            if planned[i] is not None:
                continue
            while nxt < asset_count and nxt in used:
                nxt += 1
            planned[i] = nxt if nxt < asset_count else i % asset_count
            used.add(planned[i])
    else:
        planned = []
        last: Optional[int] = None
        for seg in segments:
            idx = proposed(seg)
            if idx is None or idx == last:
                idx = 0 if last is None else (last + 1) % asset_count
            planned.append(idx)
            last = idx

    for seg, idx in zip(segments, planned):
        seg.asset_index = idx
    return segments


def _acceptable_probe(status: int, content_type: str) -> bool:
    return 200 <= status < 400 and "text/html" not in content_type.lower()


def _downsize_image(src: Path, dst: Path, max_edge: int = LOCAL_MAX_EDGE) -> Path:
    """Re-encode an image as a bounded-size RGB JPEG (blocking)."""
    with Image.open(src) as img:
        img = img.convert("RGB")
        img.thumbnail((max_edge, max_edge))
        img.save(dst, "JPEG", quality=85)
    return dst


class AssetResolver:
    """Validates ranked candidates and normalizes them through the image CDN."""

    def __init__(
        self,
        cdn: Optional[ImageCDNService] = None,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
    ):
        self.cdn = cdn
        self.probe_timeout = probe_timeout

    async def check_reachable(self, url: str) -> bool:
        """HEAD probe, falling back to a small ranged GET for servers that reject HEAD."""
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        async with aiohttp.ClientSession(headers=BROWSER_HEADERS, timeout=timeout) as session:
            try:
                async with session.head(url, allow_redirects=True) as response:
                    if _acceptable_probe(response.status, response.headers.get("content-type", "")):
                        return True
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"HEAD probe failed for {url}: {e}")

            try:
                async with session.get(
                    url, headers={"Range": PROBE_RANGE}, allow_redirects=True
                ) as response:
                    return _acceptable_probe(
                        response.status, response.headers.get("content-type", "")
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"Ranged GET probe failed for {url}: {e}")
                return False

    async def _normalize_via_local_copy(self, asset: VisualAsset, ctx: JobContext) -> Optional[str]:
        """Download, downsize and upload an image the CDN refused to fetch itself."""
        digest = hashlib.md5(asset.source_url.encode()).hexdigest()[:12]
        asset_dir = ctx.workdir / "assets"
        raw_path = asset_dir / f"{digest}.src"
        small_path = asset_dir / f"{digest}.jpg"
        try:
            if not await download_image_url(asset.source_url, raw_path, timeout=30):
                return None
            await asyncio.to_thread(_downsize_image, raw_path, small_path)
            return await self.cdn.normalize_file(small_path, ctx.width, ctx.height)
        except (ImageCDNError, OSError) as e:
            logger.warning(f"[Assets] Local CDN fallback failed for {asset.source_url}: {e}")
            return None
        finally:
            raw_path.unlink(missing_ok=True)
            small_path.unlink(missing_ok=True)

    async def validate_and_normalize(
        self, asset: VisualAsset, ctx: JobContext
    ) -> Optional[VisualAsset]:
        """Probe an asset and attach its CDN URL; None if it is unreachable."""
        if asset.key in ctx.unreachable:
            return None

        if not await self.check_reachable(asset.source_url):
            logger.info(f"[Assets] Unreachable: {asset.source_url}")
            ctx.mark_unreachable(asset)
            return None
        asset.reachability = Reachability.REACHABLE

        if self.cdn is not None and self.cdn.is_configured():
            try:
                asset.cdn_url = await self.cdn.normalize(asset.source_url, ctx.width, ctx.height)
            except ImageCDNError as e:
                if e.too_large:
                    logger.info(f"[Assets] {asset.source_url} too large for remote transform; retrying from local copy")
                    asset.cdn_url = await self._normalize_via_local_copy(asset, ctx)
                else:
                    logger.warning(f"[Assets] CDN transform failed for {asset.source_url}: {e}")
                    asset.cdn_url = None

            if asset.cdn_url and not await self.check_reachable(asset.cdn_url):
                logger.warning(f"[Assets] CDN output unreachable for {asset.source_url}")
                asset.cdn_url = None

        return asset

    async def select_assets(
        self,
        candidates: list[VisualAsset],
        ctx: JobContext,
        max_images: int = DEFAULT_MAX_IMAGES,
        parallelism: int = 4,
    ) -> list[VisualAsset]:
        """Validate candidates best-first until ``max_images`` are accepted.

        Candidates are probed in windows of ``parallelism``; a rejected
        candidate simply lets the next-best one in.
        """
        accepted: list[VisualAsset] = []
        window = max(1, parallelism)

        for start in range(0, len(candidates), window):
            batch = candidates[start:start + window]
            results = await asyncio.gather(
                *(self.validate_and_normalize(a, ctx) for a in batch),
                return_exceptions=True,
            )
            for asset, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"[Assets] Validation error for {asset.source_url}: {result}")
                    continue
                if result is not None and len(accepted) < max_images:
                    accepted.append(result)
            if len(accepted) >= max_images:
                break

        logger.info(f"[Assets] Accepted {len(accepted)}/{len(candidates)} candidates")
        return accepted
