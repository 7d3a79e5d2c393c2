"""Prompts module - centralized prompt templates for AI services.

Re-exports all prompt constants for easy importing:
    from services.prompts import PROMPT_VERSIONS, SEGMENT_SCRIPT_V1
"""

from services.prompts.shorts import (
    MUSIC_PLAN_V1,
    SEGMENT_SCRIPT_V1,
    SEO_METADATA_V1,
    SHORTEN_LINE_V1,
    TONE_HINTS,
)

# Increment these when prompts change
PROMPT_VERSIONS = {
    "write_segments": "v1",
    "shorten_line": "v1",
    "write_seo": "v1",
    "plan_music": "v1",
}

__all__ = [
    "PROMPT_VERSIONS",
    "TONE_HINTS",
    "SEGMENT_SCRIPT_V1",
    "SHORTEN_LINE_V1",
    "SEO_METADATA_V1",
    "MUSIC_PLAN_V1",
]
