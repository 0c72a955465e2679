"""
Stage 1: describe the uploaded image with a vision-capable model.
"""

import structlog

from memetrace.models.media import ContentDescription, MediaPayload
from .extraction import coerce_string_list, coerce_text, extract_json_object
from .fallbacks import FALLBACKS
from .inference import GeminiClient, call_stage_model

__all__ = ["describe_media", "parse_description", "fallback_description", "DESCRIBE_PROMPT"]

logger = structlog.get_logger()

STAGE = "describe"
REQUIRED_KEYS = ("description", "textContent", "visualElements", "theme")

DESCRIBE_PROMPT = """
You are an AI specialized in analyzing memes. Please examine this image and provide:

1. A detailed description of what's in the image
2. Any text found in the image
3. Visual elements present (people, objects, etc.)
4. The overall theme or joke of the meme

Format your response as structured JSON with the following fields:
- description: A detailed paragraph describing the whole meme
- textContent: All text found in the image
- visualElements: Array of key visual elements
- theme: The main subject or joke of the meme
"""

def _raw_description(raw_text: str) -> str:
    return raw_text.strip() or FALLBACKS.describe.empty_description

def fallback_description(raw_text: str) -> ContentDescription:
    """Description built from the raw response when no usable JSON came back."""
    defaults = FALLBACKS.describe
    return ContentDescription(
        description=_raw_description(raw_text),
        text_content=defaults.failed_text_content,
        visual_elements=list(defaults.unknown_elements),
        theme=defaults.unknown,
    )

def parse_description(raw_text: str) -> ContentDescription:
    parsed = extract_json_object(raw_text)
    if parsed is None:
        logger.warning("No JSON object in describer response, using fallback", stage=STAGE,
                       response_preview=raw_text[:200])
        return fallback_description(raw_text)

    missing = [key for key in REQUIRED_KEYS if key not in parsed]
    if missing:
        logger.warning("Describer response missing fields, using fallback", stage=STAGE, missing=missing)
        return fallback_description(raw_text)

    defaults = FALLBACKS.describe
    return ContentDescription(
        description=coerce_text(parsed["description"], _raw_description(raw_text)),
        text_content=coerce_text(parsed["textContent"], defaults.unknown),
        visual_elements=coerce_string_list(parsed["visualElements"], defaults.unknown_elements),
        theme=coerce_text(parsed["theme"], defaults.unknown),
    )

async def describe_media(client: GeminiClient, payload: MediaPayload) -> ContentDescription:
    raw_text = await call_stage_model(client, STAGE, DESCRIBE_PROMPT, media=payload)
    description = parse_description(raw_text)
    logger.info("Media described",
               stage=STAGE,
               mime_type=payload.mime_type,
               visual_elements=len(description.visual_elements),
               theme=description.theme)
    return description
