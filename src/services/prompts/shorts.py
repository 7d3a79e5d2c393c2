"""Short-video prompt templates.

Contains prompts for:
- SEGMENT_SCRIPT_V1: Narration, motion prompt and image pick per timed segment
- SHORTEN_LINE_V1: Rewrite one overlong narration line to its word budget
- SEO_METADATA_V1: Title, description and tags for publishing
- MUSIC_PLAN_V1: Background music search terms and mix gains
"""

# Tone hint per category, appended to the segment prompt
TONE_HINTS = {
    "Sports": "Use an energetic, motivational tone and sprinkle light humour.",
    "Politics": "Maintain an authoritative yet neutral tone.",
    "Finance": "Speak in a confident, analytical tone.",
    "Entertainment": "Keep it upbeat and engaging.",
    "Technology": "Adopt a forward-looking, curious tone.",
    "Health": "Stay reassuring and informative.",
    "Lifestyle": "Be friendly and encouraging.",
    "Science": "Convey wonder and clarity.",
    "World": "Maintain an objective, international outlook.",
    "Top5": "Keep each item snappy, thrilling, and hype-driven.",
}

# Segment Script v1 prompt
# Template placeholders: {current_date}, {duration}, {category}, {topic}, {segment_count},
# {segment_table}, {top5_rules}, {image_count}, {tone_hint}, {language_rule}, {context}
SEGMENT_SCRIPT_V1 = """Current date: {current_date}
We need a {duration}s {category} short video about "{topic}" split into {segment_count} segments.

SEGMENT PLAN (seconds and maximum spoken words)
{segment_table}

{top5_rules}
RULES
- Segment 1 is a 3-second hook: one punchy line, no greeting.
- Never exceed a segment's word cap; spoken narration only, no stage directions.
- The last segment is the closing call to action: invite viewers to follow and comment,
  in at least 12 words.
- "motionPrompt" describes one filmable camera shot for an image-to-video model:
  subject, action, camera move. No on-screen text, logos or brand names.
- "imageQuery" is a 2-6 word web image search for this segment's visual.
- "imageIndex" picks one of the {image_count} available topic images (0-based), or null.
{tone_hint}{language_rule}

OUTPUT
Return a strict JSON array with one object per segment, in order:
[{{"index": 1, "script": "...", "motionPrompt": "...", "imageQuery": "...", "imageIndex": 0}}]
Do NOT wrap the JSON in markdown.
{context}"""

# Shorten Line v1 prompt
# Template placeholders: {max_words}, {line}
SHORTEN_LINE_V1 = """Rewrite in active voice, keep all facts, at most {max_words} words.
One sentence only. No filler words. Return only the sentence.

"{line}\""""

# SEO Metadata v1 prompt
# Template placeholders: {topic}, {category}, {language}, {script}
SEO_METADATA_V1 = """You are a YouTube Shorts SEO specialist.

Write publishing metadata for a {category} short about "{topic}".
Everything must be written in {language}.

NARRATION
<<<
{script}
>>>

OUTPUT (JSON object only)
{{
  "title": "under 70 characters, specific, no clickbait emojis",
  "description": "2-3 sentences summarizing the story, then 3-5 hashtags",
  "tags": ["8 to 15 short search tags"]
}}"""

# Music Plan v1 prompt
# Template placeholders: {category}, {language}, {script}
MUSIC_PLAN_V1 = """You are a sound designer for short-form YouTube videos.

Goal:
- Category: {category}
- Language of narration: {language}
- Pick background music that supports the narration without competing with it.

NARRATION
<<<
{script}
>>>

OUTPUT (JSON object only)
{{
  "jamendoSearch": "one concise English search term implying no vocals",
  "fallbackSearchTerms": ["two or three alternative search terms"],
  "voiceGain": 1.4,
  "musicGain": 0.12
}}"""
