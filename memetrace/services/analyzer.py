"""
Stage 4: estimate how confidently the upload can be attributed to the selected creator.
"""

import structlog

from memetrace.models.attribution import ConfidenceReport
from memetrace.models.media import DatasetRecord
from .extraction import coerce_score, coerce_string_list, coerce_text, extract_json_object
from .fallbacks import FALLBACKS
from .inference import GeminiClient, call_stage_model

__all__ = [
    "analyze_confidence",
    "parse_report",
    "fallback_report",
    "missing_match_report",
    "build_analyze_prompt",
]

logger = structlog.get_logger()

STAGE = "analyze"

ANALYZE_PROMPT = """
You are an AI specialized in analyzing meme attribution. I have a meme and a potential creator match.

Original meme description:
"{description}"

Matched creator and post:
- Creator: {creator}
- Post Description: {post_description}
- Upload Date: {upload_date}

Generate a detailed analysis of how well this meme matches the creator's style.
Calculate a confident match percentage based on:
- Visual style similarities
- Text formatting and language patterns
- Theme and humor approach
- Any unique identifiers or watermarks

Format your response as structured JSON with the following fields:
- matchPercentage: A number between 0-100 representing confidence
- matchingFeatures: Array of specific features that match
- creatorStyle: Description of the creator's typical style
- confidenceExplanation: Detailed explanation of the match confidence
"""

def build_analyze_prompt(description: str, match: DatasetRecord) -> str:
    return ANALYZE_PROMPT.format(
        description=description,
        creator=match.creator_username or "Unknown",
        post_description=match.description or "No description",
        upload_date=match.upload_date or "Unknown",
    )

def missing_match_report() -> ConfidenceReport:
    defaults = FALLBACKS.analyze
    return ConfidenceReport(
        match_percentage=defaults.percentage,
        matching_features=[],
        creator_style=defaults.missing_match_style,
        confidence_explanation=defaults.missing_match_explanation,
    )

def fallback_report() -> ConfidenceReport:
    defaults = FALLBACKS.analyze
    return ConfidenceReport(
        match_percentage=defaults.percentage,
        matching_features=[],
        creator_style=defaults.failed_style,
        confidence_explanation=defaults.failed_explanation,
    )

def parse_report(raw_text: str) -> ConfidenceReport:
    parsed = extract_json_object(raw_text)
    if parsed is None:
        logger.warning("No JSON object in analyzer response, using fallback", stage=STAGE,
                       response_preview=raw_text[:200])
        return fallback_report()

    defaults = FALLBACKS.analyze
    return ConfidenceReport(
        match_percentage=coerce_score(parsed.get("matchPercentage"), defaults.percentage),
        matching_features=coerce_string_list(parsed.get("matchingFeatures")),
        creator_style=coerce_text(parsed.get("creatorStyle"), defaults.missing_style),
        confidence_explanation=coerce_text(parsed.get("confidenceExplanation"), defaults.missing_explanation),
    )

async def analyze_confidence(client: GeminiClient, description: str, match: DatasetRecord) -> ConfidenceReport:
    if not match.has_creator:
        logger.warning("Selected match has no creator, skipping confidence analysis",
                       stage=STAGE, match_id=match.id)
        return missing_match_report()

    raw_text = await call_stage_model(client, STAGE, build_analyze_prompt(description, match))
    report = parse_report(raw_text)
    logger.info("Confidence analyzed",
               stage=STAGE,
               match_id=match.id,
               match_percentage=report.match_percentage,
               matching_features=len(report.matching_features))
    return report
