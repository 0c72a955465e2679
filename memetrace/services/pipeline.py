"""
Attribution pipeline orchestrator.

Runs the four stages strictly in order, one inference call each:

    describe -> match -> select -> analyze

Every run gets its own PipelineRun that records the state transitions. A stage
whose inference call fails stops the run and surfaces as a single PipelineError
naming the stage; no partial result is ever returned.
"""

import asyncio
import uuid
import structlog
from typing import Dict, List, Optional, Sequence

from memetrace.models.attribution import AttributionResult, PipelineState
from memetrace.models.media import DatasetRecord, MediaPayload
from .analyzer import analyze_confidence
from .describer import describe_media
from .errors import PipelineError, StageError
from .inference import GeminiClient
from .matcher import match_candidates
from .selector import select_best_match

__all__ = ["AttributionPipeline", "PipelineRun", "STAGE_BY_STATE"]

logger = structlog.get_logger()

STAGE_BY_STATE: Dict[PipelineState, str] = {
    PipelineState.DESCRIBING_MEDIA: "describe",
    PipelineState.MATCHING_CANDIDATES: "match",
    PipelineState.SELECTING_BEST_MATCH: "select",
    PipelineState.ANALYZING_CONFIDENCE: "analyze",
}

_TERMINAL_STATES = (PipelineState.COMPLETE, PipelineState.FAILED)

# Forward transitions; FAILED is reachable from any in-progress state
NEXT_STATE: Dict[PipelineState, PipelineState] = {
    PipelineState.IDLE: PipelineState.DESCRIBING_MEDIA,
    PipelineState.DESCRIBING_MEDIA: PipelineState.MATCHING_CANDIDATES,
    PipelineState.MATCHING_CANDIDATES: PipelineState.SELECTING_BEST_MATCH,
    PipelineState.SELECTING_BEST_MATCH: PipelineState.ANALYZING_CONFIDENCE,
    PipelineState.ANALYZING_CONFIDENCE: PipelineState.COMPLETE,
}

class PipelineRun:
    """State of a single pipeline invocation."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.failed_stage: Optional[str] = None
        self.failure_cause: Optional[str] = None

    @property
    def current_stage(self) -> Optional[str]:
        return STAGE_BY_STATE.get(self.state)

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL_STATES

    def advance(self, state: PipelineState) -> None:
        if self.finished:
            raise RuntimeError(f"Pipeline run {self.run_id} already finished in state {self.state.value}")
        if state == PipelineState.FAILED:
            if self.current_stage is None:
                raise RuntimeError(f"Pipeline run {self.run_id} cannot fail from state {self.state.value}")
        elif NEXT_STATE.get(self.state) != state:
            raise RuntimeError(
                f"Pipeline run {self.run_id} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state
        self.history.append(state)
        logger.debug("Pipeline state changed", run_id=self.run_id, state=state.value)

    def fail(self, stage: str, cause: str) -> None:
        self.advance(PipelineState.FAILED)
        self.failed_stage = stage
        self.failure_cause = cause

class AttributionPipeline:
    """Sequential four-stage attribution over a shared inference client."""

    def __init__(self, client: GeminiClient):
        self.client = client

    async def run(
        self,
        payload: MediaPayload,
        dataset: Sequence[DatasetRecord],
        run_id: Optional[str] = None,
        pipeline_run: Optional[PipelineRun] = None,
    ) -> AttributionResult:
        """
        Attribute an uploaded image to a creator from the dataset.

        Args:
            payload: Encoded upload
            dataset: Known prior posts, in the order the source returned them
            run_id: Identifier used in logs; generated when omitted
            pipeline_run: Pre-built run state, lets callers observe progress

        Returns:
            AttributionResult assembled from all four stage outputs

        Raises:
            PipelineError: a stage's inference call failed
            ValueError: pipeline_run was already started
        """
        run = pipeline_run or PipelineRun(run_id)
        if run.state != PipelineState.IDLE:
            raise ValueError(f"Pipeline run {run.run_id} was already started (state {run.state.value})")
        log = logger.bind(run_id=run.run_id)
        log.info("Starting attribution pipeline", dataset_size=len(dataset), mime_type=payload.mime_type)

        try:
            run.advance(PipelineState.DESCRIBING_MEDIA)
            description = await describe_media(self.client, payload)

            run.advance(PipelineState.MATCHING_CANDIDATES)
            candidates = await match_candidates(self.client, description.description, dataset)

            run.advance(PipelineState.SELECTING_BEST_MATCH)
            selected = await select_best_match(self.client, description.description, candidates)

            run.advance(PipelineState.ANALYZING_CONFIDENCE)
            report = await analyze_confidence(self.client, description.description, selected.match)

            result = AttributionResult.assemble(description, candidates, selected, report)
        except StageError as e:
            run.fail(e.stage, str(e.cause))
            log.error("Attribution pipeline failed", stage=e.stage, error=str(e.cause))
            raise PipelineError(e.stage, e.cause) from e
        except asyncio.CancelledError:
            stage = run.current_stage or "idle"
            run.fail(stage, "cancelled")
            log.warning("Attribution pipeline cancelled", stage=stage)
            raise
        except Exception as e:
            stage = run.current_stage or "idle"
            run.fail(stage, str(e))
            log.error("Attribution pipeline failed unexpectedly", stage=stage, error=str(e))
            raise PipelineError(stage, e) from e

        run.advance(PipelineState.COMPLETE)
        log.info("Attribution pipeline completed",
                 candidates=len(result.matches),
                 final_match_id=result.final_match.id,
                 match_percentage=result.match_result.percentage)
        return result
