import asyncio

import pytest

from conftest import FakeClient, fenced
from memetrace.models.attribution import PipelineState
from memetrace.services.errors import InferenceError, PipelineError
from memetrace.services.pipeline import AttributionPipeline, PipelineRun

SELECTION = {"matchIndex": 2, "explanation": "Same template and caption font", "similarityScore": 91}
REPORT = {
    "matchPercentage": 78,
    "matchingFeatures": ["caption font", "cat"],
    "creatorStyle": "Minimal captions over pet photos",
    "confidenceExplanation": "Layout and watermark match the creator's posts",
}

@pytest.mark.asyncio
async def test_full_run_assembles_result(payload, dataset, description_json):
    client = FakeClient(
        fenced(description_json),
        '{"matches": [2, 5], "explanations": {"2": "cat and mug", "5": "same caption"}}',
        fenced(SELECTION),
        fenced(REPORT),
    )
    run = PipelineRun("run-1")
    result = await AttributionPipeline(client).run(payload, dataset, pipeline_run=run)

    assert len(client.calls) == 4
    assert [match.id for match in result.matches] == [102, 105]
    assert result.matches[1].explanation == "same caption"
    assert result.final_match.id == 105
    assert result.final_match.creator == "creator_5"
    assert result.final_match.similarity_score == 91
    assert result.match_result.percentage == 78
    assert run.history == [
        PipelineState.IDLE,
        PipelineState.DESCRIBING_MEDIA,
        PipelineState.MATCHING_CANDIDATES,
        PipelineState.SELECTING_BEST_MATCH,
        PipelineState.ANALYZING_CONFIDENCE,
        PipelineState.COMPLETE,
    ]

    body = result.model_dump(by_alias=True)
    assert body["success"] is True
    assert body["originalAnalysis"]["textContent"] == "MONDAY AGAIN"
    assert body["finalMatch"]["similarityScore"] == 91
    assert body["matchResult"]["creatorStyle"] == "Minimal captions over pet photos"

@pytest.mark.asyncio
async def test_stage_one_failure_stops_pipeline(payload, dataset):
    client = FakeClient(InferenceError("network unreachable"))
    run = PipelineRun()

    with pytest.raises(PipelineError) as exc_info:
        await AttributionPipeline(client).run(payload, dataset, pipeline_run=run)

    assert exc_info.value.stage == "describe"
    assert len(client.calls) == 1
    assert run.state == PipelineState.FAILED
    assert run.failed_stage == "describe"
    assert PipelineState.MATCHING_CANDIDATES not in run.history

@pytest.mark.asyncio
async def test_later_stage_failure_names_that_stage(payload, dataset, description_json):
    client = FakeClient(
        fenced(description_json),
        '{"matches": [1], "explanations": {}}',
        InferenceError("quota exceeded"),
    )
    with pytest.raises(PipelineError) as exc_info:
        await AttributionPipeline(client).run(payload, dataset)

    assert exc_info.value.stage == "select"
    assert "quota exceeded" in str(exc_info.value)

@pytest.mark.asyncio
async def test_empty_dataset_only_calls_describer(payload, description_json):
    client = FakeClient(fenced(description_json))
    result = await AttributionPipeline(client).run(payload, [])

    assert len(client.calls) == 1
    assert result.matches == []
    assert result.final_match.id == -1
    assert result.final_match.similarity_score == 0
    assert result.match_result.percentage == 0
    assert result.match_result.explanation == "Analysis could not be performed due to missing match data."

@pytest.mark.asyncio
async def test_cancellation_marks_run_failed(payload, dataset):
    started = asyncio.Event()

    class HangingClient:
        calls = 0

        async def generate(self, prompt, media=None):
            HangingClient.calls += 1
            started.set()
            await asyncio.sleep(3600)

    run = PipelineRun()
    task = asyncio.ensure_future(AttributionPipeline(HangingClient()).run(payload, dataset, pipeline_run=run))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert HangingClient.calls == 1
    assert run.state == PipelineState.FAILED
    assert run.failed_stage == "describe"
    assert run.failure_cause == "cancelled"

def test_finished_run_rejects_transitions():
    run = PipelineRun()
    run.advance(PipelineState.DESCRIBING_MEDIA)
    run.fail("describe", "boom")

    with pytest.raises(RuntimeError):
        run.advance(PipelineState.MATCHING_CANDIDATES)

def test_run_rejects_out_of_order_transitions():
    run = PipelineRun()
    with pytest.raises(RuntimeError):
        run.advance(PipelineState.SELECTING_BEST_MATCH)
    with pytest.raises(RuntimeError):
        run.fail("idle", "nothing started")

    run.advance(PipelineState.DESCRIBING_MEDIA)
    with pytest.raises(RuntimeError):
        run.advance(PipelineState.COMPLETE)
    assert run.history == [PipelineState.IDLE, PipelineState.DESCRIBING_MEDIA]

@pytest.mark.asyncio
async def test_started_run_is_rejected_before_any_call(payload, dataset):
    client = FakeClient()
    run = PipelineRun()
    run.advance(PipelineState.DESCRIBING_MEDIA)
    run.fail("describe", "boom")

    with pytest.raises(ValueError):
        await AttributionPipeline(client).run(payload, dataset, pipeline_run=run)
    assert client.calls == []
    assert run.failure_cause == "boom"
