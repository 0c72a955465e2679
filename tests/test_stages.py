import pytest

from conftest import FakeClient, fenced
from memetrace.models.attribution import CandidateSet
from memetrace.models.media import DatasetRecord, SENTINEL_RECORD_ID
from memetrace.services.analyzer import analyze_confidence, parse_report
from memetrace.services.describer import describe_media, parse_description
from memetrace.services.errors import InferenceError, StageError
from memetrace.services.fallbacks import FALLBACKS
from memetrace.services.matcher import match_candidates, parse_candidates, summarize_dataset
from memetrace.services.selector import parse_selection, select_best_match

# Stage 1

@pytest.mark.asyncio
async def test_describe_media_parses_fenced_json(payload, description_json):
    client = FakeClient(fenced(description_json))
    description = await describe_media(client, payload)

    assert description.description == "A cat staring at an empty coffee mug"
    assert description.text_content == "MONDAY AGAIN"
    assert description.visual_elements == ["cat", "mug"]
    assert description.theme == "Monday fatigue"
    prompt, media = client.calls[0]
    assert media is payload
    assert "textContent" in prompt

def test_describe_fallback_keeps_raw_text():
    description = parse_description("I could not produce JSON, but it is a cat.")
    assert description.description == "I could not produce JSON, but it is a cat."
    assert description.text_content == "Text extraction failed"
    assert description.visual_elements == ["Unknown"]
    assert description.theme == "Unknown"

def test_describe_missing_key_uses_full_fallback(description_json):
    del description_json["theme"]
    description = parse_description(fenced(description_json))
    assert description.text_content == "Text extraction failed"
    assert description.theme == "Unknown"

def test_describe_empty_fields_get_placeholders():
    raw = '{"description": "a dog", "textContent": "", "visualElements": [], "theme": null}'
    description = parse_description(raw)
    assert description.description == "a dog"
    assert description.text_content == "Unknown"
    assert description.visual_elements == ["Unknown"]
    assert description.theme == "Unknown"

def test_describe_blank_response():
    description = parse_description("   ")
    assert description.description == FALLBACKS.describe.empty_description

@pytest.mark.asyncio
async def test_describe_inference_failure_is_stage_error(payload):
    client = FakeClient(InferenceError("connection reset"))
    with pytest.raises(StageError) as exc_info:
        await describe_media(client, payload)
    assert exc_info.value.stage == "describe"
    assert isinstance(exc_info.value.cause, InferenceError)

# Stage 2

@pytest.mark.asyncio
async def test_match_drops_out_of_range_indices(dataset):
    client = FakeClient('{"matches":[1,3,9],"explanations":{"1":"x"}}')
    candidates = await match_candidates(client, "a cat", dataset)

    assert len(candidates) == 2
    assert candidates.candidates[0] is dataset[0]
    assert candidates.candidates[1] is dataset[2]
    assert candidates.explanations == {0: "x"}

def test_match_rekeys_explanations_to_positions(dataset):
    raw = fenced({"matches": [4, 2, 4, "x", 0], "explanations": {"2": "second", "4": "fourth", "9": "gone"}})
    candidates = parse_candidates(raw, dataset)

    assert [record.id for record in candidates.candidates] == [104, 102]
    assert candidates.explanations == {0: "fourth", 1: "second"}
    assert all(any(record is item for item in dataset) for record in candidates.candidates)

def test_match_parse_failure_uses_first_records(dataset):
    candidates = parse_candidates("sorry, no idea", dataset)
    assert candidates.candidates == dataset[:3]
    assert candidates.explanations == {0: FALLBACKS.match.explanation}

@pytest.mark.asyncio
async def test_match_empty_dataset_skips_inference():
    client = FakeClient()
    candidates = await match_candidates(client, "a cat", [])
    assert len(candidates) == 0
    assert client.calls == []

def test_dataset_summary_truncates_descriptions():
    records = [
        DatasetRecord(id=1, creator_username="a", description="x" * 400),
        DatasetRecord(id=2, creator_username="b", description="short"),
        DatasetRecord(id=3),
    ]
    summary = summarize_dataset(records)
    assert "x" * 300 + "..." in summary
    assert "x" * 301 not in summary
    assert "short..." not in summary
    assert "No description available" in summary
    assert "Item 3:" in summary

# Stage 3

@pytest.mark.asyncio
async def test_select_empty_candidates_returns_sentinel():
    client = FakeClient()
    selected = await select_best_match(client, "a cat", CandidateSet())

    assert selected.match.id == SENTINEL_RECORD_ID
    assert selected.similarity_score == 0
    assert selected.explanation == FALLBACKS.select.no_candidates_explanation
    assert client.calls == []

@pytest.mark.asyncio
async def test_select_out_of_range_index_falls_back(dataset):
    candidates = CandidateSet(candidates=dataset[:3])
    client = FakeClient(fenced({"matchIndex": 99, "explanation": "nope", "similarityScore": 95}))
    selected = await select_best_match(client, "a cat", candidates)

    assert selected.match is dataset[0]
    assert selected.similarity_score == 70
    assert selected.explanation == "Automatic fallback to first match due to processing error"

def test_select_valid_index_returns_same_record(dataset):
    candidates = CandidateSet(candidates=[dataset[3], dataset[1]])
    selected = parse_selection('{"matchIndex": "2", "explanation": "same template", "similarityScore": 88}', candidates)

    assert selected.match is dataset[1]
    assert selected.explanation == "same template"
    assert selected.similarity_score == 88

def test_select_coerces_bad_score_and_explanation(dataset):
    candidates = CandidateSet(candidates=dataset[:2])
    selected = parse_selection('{"matchIndex": 1, "similarityScore": 140}', candidates)

    assert selected.match is dataset[0]
    assert selected.similarity_score == 0
    assert selected.explanation == "No explanation provided."

# Stage 4

@pytest.mark.asyncio
async def test_analyze_sentinel_match_skips_inference():
    client = FakeClient()
    report = await analyze_confidence(client, "a cat", DatasetRecord.sentinel())

    assert report.match_percentage == 0
    assert report.matching_features == []
    assert report.confidence_explanation == "Analysis could not be performed due to missing match data."
    assert client.calls == []

@pytest.mark.asyncio
async def test_analyze_parses_report(dataset):
    client = FakeClient(fenced({
        "matchPercentage": 82,
        "matchingFeatures": ["Impact font", "cat photo"],
        "creatorStyle": "Deadpan office humor",
        "confidenceExplanation": "Same watermark in the corner",
    }))
    report = await analyze_confidence(client, "a cat", dataset[0])

    assert report.match_percentage == 82
    assert report.matching_features == ["Impact font", "cat photo"]
    assert report.creator_style == "Deadpan office humor"
    assert "creator_1" in client.calls[0][0]

def test_analyze_coercion_defaults():
    report = parse_report('{"matchPercentage": "very", "matchingFeatures": "font"}')
    assert report.match_percentage == 0
    assert report.matching_features == []
    assert report.creator_style == FALLBACKS.analyze.missing_style
    assert report.confidence_explanation == FALLBACKS.analyze.missing_explanation

def test_analyze_parse_failure_fallback():
    report = parse_report("The creator is probably the same.")
    assert report.match_percentage == 0
    assert report.creator_style == "Analysis failed due to processing error."
    assert report.confidence_explanation == "Could not determine confidence due to processing error."

@pytest.mark.parametrize("value", [-5, 101, "NaN", None, [], "12abc"])
def test_scores_always_in_range(dataset, value):
    candidates = CandidateSet(candidates=dataset[:1])
    selected = parse_selection(fenced({"matchIndex": 1, "similarityScore": value}), candidates)
    report = parse_report(fenced({"matchPercentage": value}))

    assert 0 <= selected.similarity_score <= 100
    assert 0 <= report.match_percentage <= 100

@pytest.mark.asyncio
async def test_match_truncated_reply_uses_first_records(dataset):
    client = FakeClient('{"matches": [2, 4], "explanations": {"2": "same cat"}, "notes": "the second one is')
    candidates = await match_candidates(client, "a cat", dataset)

    assert [record.id for record in candidates.candidates] == [101, 102, 103]
    assert candidates.explanations == {0: FALLBACKS.match.explanation}

def test_analyze_truncated_reply_uses_failure_fallback():
    report = parse_report('{"matchPercentage": 80, "details": {"font": "Impact"}, "creatorStyle": "dry')
    assert report.creator_style == FALLBACKS.analyze.failed_style
    assert report.confidence_explanation == FALLBACKS.analyze.failed_explanation
