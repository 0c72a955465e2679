"""
Stage 3: choose the single closest candidate.
"""

import structlog

from memetrace.models.attribution import CandidateSet, SelectedMatch
from memetrace.models.media import DatasetRecord
from .extraction import coerce_index, coerce_score, coerce_text, extract_json_object
from .fallbacks import FALLBACKS
from .inference import GeminiClient, call_stage_model

__all__ = [
    "select_best_match",
    "parse_selection",
    "fallback_selection",
    "no_candidates_selection",
    "summarize_candidates",
    "build_select_prompt",
]

logger = structlog.get_logger()

STAGE = "select"

SELECT_PROMPT = """
You are an AI specialized in analyzing meme similarity. I have a meme description and several potential matches.

Original meme description:
"{description}"

Potential matches:
{candidate_summary}

Analyze these matches and determine which ONE is the closest match to the original.
Consider visual elements, text content, theme, and style. Provide a detailed explanation of why this is the best match.

Format your response as structured JSON with the following fields:
- matchIndex: The index (starting from 1) of the best match from the list provided above.
- explanation: Detailed explanation of why this is the best match.
- similarityScore: A score from 0-100 representing how similar they are.
"""

def summarize_candidates(candidates: CandidateSet) -> str:
    entries = []
    for index, record in enumerate(candidates.candidates, start=1):
        entries.append(
            f"Match {index}:\n"
            f"- Creator: {record.creator_username or 'Unknown'}\n"
            f"- Description: {record.description or 'No description'}\n"
            f"- Upload Date: {record.upload_date or 'Unknown'}\n"
            f"- Image URL: {record.image_url or 'N/A'}"
        )
    return "\n\n".join(entries)

def build_select_prompt(description: str, candidates: CandidateSet) -> str:
    return SELECT_PROMPT.format(description=description, candidate_summary=summarize_candidates(candidates))

def no_candidates_selection() -> SelectedMatch:
    defaults = FALLBACKS.select
    return SelectedMatch(
        match=DatasetRecord.sentinel(),
        explanation=defaults.no_candidates_explanation,
        similarity_score=defaults.no_candidates_score,
    )

def fallback_selection(candidates: CandidateSet) -> SelectedMatch:
    defaults = FALLBACKS.select
    return SelectedMatch(
        match=candidates.candidates[0],
        explanation=defaults.explanation,
        similarity_score=defaults.score,
    )

def parse_selection(raw_text: str, candidates: CandidateSet) -> SelectedMatch:
    """Validate the model's pick against the candidate set; expects a non-empty set."""
    parsed = extract_json_object(raw_text)
    if parsed is None:
        logger.warning("No JSON object in selector response, using first candidate", stage=STAGE,
                       response_preview=raw_text[:200])
        return fallback_selection(candidates)

    index = coerce_index(parsed.get("matchIndex"))
    if index is None or not 1 <= index <= len(candidates):
        logger.warning("Invalid match index from selector, using first candidate",
                       stage=STAGE,
                       match_index=parsed.get("matchIndex"),
                       candidates=len(candidates))
        return fallback_selection(candidates)

    defaults = FALLBACKS.select
    return SelectedMatch(
        match=candidates.candidates[index - 1],
        explanation=coerce_text(parsed.get("explanation"), defaults.missing_explanation),
        similarity_score=coerce_score(parsed.get("similarityScore"), defaults.invalid_score),
    )

async def select_best_match(client: GeminiClient, description: str, candidates: CandidateSet) -> SelectedMatch:
    if not candidates.candidates:
        logger.warning("No candidates to choose from, returning sentinel match", stage=STAGE)
        return no_candidates_selection()

    raw_text = await call_stage_model(client, STAGE, build_select_prompt(description, candidates))
    selected = parse_selection(raw_text, candidates)
    logger.info("Best match selected",
               stage=STAGE,
               match_id=selected.match.id,
               similarity_score=selected.similarity_score)
    return selected
