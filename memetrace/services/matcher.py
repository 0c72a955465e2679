"""
Stage 2: pick plausible candidates for the upload out of the dataset.

The model sees a bounded summary of every record and answers with 1-based
item indices plus an explanation per index. Indices are validated against the
dataset and re-keyed to 0-based candidate positions; invalid ones are dropped.
"""

import structlog
from typing import Any, Dict, List, Sequence

from memetrace import config
from memetrace.models.attribution import CandidateSet
from memetrace.models.media import DatasetRecord
from .extraction import coerce_index, extract_json_object
from .fallbacks import FALLBACKS
from .inference import GeminiClient, call_stage_model

__all__ = [
    "match_candidates",
    "parse_candidates",
    "fallback_candidates",
    "summarize_dataset",
    "build_match_prompt",
]

logger = structlog.get_logger()

STAGE = "match"

MATCH_PROMPT = """
You are an AI specialized in matching meme descriptions. I have a meme description and a dataset of known memes.

Here's the description of the meme we're trying to match:
"{description}"

Here's a summary of my dataset:
{dataset_summary}

From this dataset, identify the 2-5 most likely matches based on similarity of content, style, and theme.
Explain why each is a potential match.

Format your response as structured JSON with the following fields:
- matches: Array of indices (starting from 1) of the best matches
- explanations: Object with indices as keys and explanation strings as values
"""

def summarize_dataset(dataset: Sequence[DatasetRecord], max_chars: int = config.DESCRIPTION_SUMMARY_CHARS) -> str:
    """One numbered entry per record: creator, truncated description, upload date."""
    entries = []
    for index, record in enumerate(dataset, start=1):
        description = record.description or ""
        if not description:
            description = "No description available"
        elif len(description) > max_chars:
            description = description[:max_chars] + "..."
        entries.append(
            f"Item {index}:\n"
            f"- Creator: {record.creator_username or 'Unknown'}\n"
            f"- Description: {description}\n"
            f"- Upload Date: {record.upload_date or 'Unknown'}"
        )
    return "\n\n".join(entries)

def build_match_prompt(description: str, dataset: Sequence[DatasetRecord]) -> str:
    return MATCH_PROMPT.format(description=description, dataset_summary=summarize_dataset(dataset))

def fallback_candidates(dataset: Sequence[DatasetRecord]) -> CandidateSet:
    """First few records of the dataset, used when the model answer is unusable."""
    defaults = FALLBACKS.match
    candidates = list(dataset[:defaults.record_count])
    explanations = {0: defaults.explanation} if candidates else {}
    return CandidateSet(candidates=candidates, explanations=explanations)

def _explanations_by_index(raw: Any) -> Dict[int, str]:
    if not isinstance(raw, dict):
        return {}
    explanations = {}
    for key, value in raw.items():
        index = coerce_index(key)
        if index is not None and isinstance(value, str) and value.strip():
            explanations[index] = value.strip()
    return explanations

def parse_candidates(raw_text: str, dataset: Sequence[DatasetRecord]) -> CandidateSet:
    parsed = extract_json_object(raw_text)
    if parsed is None:
        logger.warning("No JSON object in matcher response, using fallback", stage=STAGE,
                       response_preview=raw_text[:200])
        return fallback_candidates(dataset)

    raw_matches = parsed.get("matches")
    if not isinstance(raw_matches, list):
        raw_matches = []
    explanations_by_index = _explanations_by_index(parsed.get("explanations"))

    candidates: List[DatasetRecord] = []
    explanations: Dict[int, str] = {}
    seen = set()
    for value in raw_matches:
        index = coerce_index(value)
        if index is None or not 1 <= index <= len(dataset) or index in seen:
            continue
        seen.add(index)
        if index in explanations_by_index:
            explanations[len(candidates)] = explanations_by_index[index]
        candidates.append(dataset[index - 1])

    if len(candidates) != len(raw_matches):
        logger.debug("Dropped invalid candidate indices",
                    stage=STAGE,
                    returned=len(raw_matches),
                    kept=len(candidates),
                    dataset_size=len(dataset))
    return CandidateSet(candidates=candidates, explanations=explanations)

async def match_candidates(
    client: GeminiClient,
    description: str,
    dataset: Sequence[DatasetRecord],
) -> CandidateSet:
    if not dataset:
        logger.warning("Dataset is empty, no candidates to match", stage=STAGE)
        return CandidateSet()

    raw_text = await call_stage_model(client, STAGE, build_match_prompt(description, dataset))
    candidates = parse_candidates(raw_text, dataset)
    logger.info("Candidates matched",
               stage=STAGE,
               dataset_size=len(dataset),
               candidates_found=len(candidates))
    return candidates
