"""
Humanness quiz endpoints.

- ``POST /humanness/sessions`` starts a session record.
- ``POST /humanness/sessions/{session_id}/steps`` records one answered question
  through the step coalescer; the response arrives once the batch is written.
- ``POST /humanness/analyze`` runs baselines + comparative analysis for a full
  set of answers.
- ``POST /humanness/sessions/{session_id}/analysis`` stores a finished analysis.
- ``GET /humanness/stats/{step_number}`` reports how others answered a step.

Errors are ``HumannessError`` subclasses; ``main`` turns them into a JSON body.
"""

from __future__ import annotations
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..analysis import ComparativeAnalyzer, run_analysis
from ..baselines import BaselineOrchestrator, missing_baselines
from ..coalescer import StepCoalescer
from ..errors import ValidationFailure
from ..schemas import AnalyzeRequest, SaveAnalysisRequest, StartSessionRequest, StepEvent
from ..settings import settings
from ..store import SqlSessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/humanness", tags=["humanness"])


def get_store(request: Request) -> SqlSessionStore:
	return request.app.state.store


def get_coalescer(request: Request) -> StepCoalescer:
	return request.app.state.coalescer


def get_orchestrator(request: Request) -> BaselineOrchestrator:
	return request.app.state.orchestrator


def get_analyzer(request: Request) -> ComparativeAnalyzer:
	return request.app.state.analyzer


@router.post("/sessions")
async def start_session(req: StartSessionRequest, store: SqlSessionStore = Depends(get_store)) -> Dict[str, Any]:
	record = await store.create(client_session_id=req.client_session_id, steps_total=settings.steps_total)
	return {"success": True, "sessionId": record.id}


@router.post("/sessions/{session_id}/steps")
async def record_step(session_id: str, step: StepEvent, coalescer: StepCoalescer = Depends(get_coalescer)) -> Dict[str, Any]:
	return await coalescer.submit(session_id, step)


@router.post("/analyze")
async def analyze(
	req: AnalyzeRequest,
	orchestrator: BaselineOrchestrator = Depends(get_orchestrator),
	analyzer: ComparativeAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
	if not req.steps:
		raise ValidationFailure("Steps data is required")
	logger.info("Humanness analysis requested for %d step(s)", len(req.steps))
	result, baselines = await run_analysis(
		req.steps,
		orchestrator,
		analyzer,
		average_response_time=req.average_response_time,
	)
	gaps = missing_baselines(baselines, [s.step_number for s in req.steps])
	if gaps:
		logger.warning("Partial baselines: %s", gaps)
	return {"success": True, "analysis": result.to_wire(), "partial": bool(gaps)}


@router.post("/sessions/{session_id}/analysis")
async def save_analysis(session_id: str, req: SaveAnalysisRequest, store: SqlSessionStore = Depends(get_store)) -> Dict[str, Any]:
	await store.save_analysis(session_id, req.analysis)
	return {"success": True}


@router.get("/stats/{step_number}")
async def population_stats(step_number: int, store: SqlSessionStore = Depends(get_store)) -> Dict[str, Any]:
	stats = await store.population_stats(step_number)
	return {"success": True, "stats": stats.to_wire()}
