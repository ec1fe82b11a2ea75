from __future__ import annotations
import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import SessionLocal
from .errors import SessionNotFound, TransportFailure
from .models import QuizSession
from .schemas import AnalysisResult, CommonResponse, PopulationStats, SessionMeta, SessionRecord, StepEvent, utcnow
from .settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _jsonable(value: Any) -> Any:
	if isinstance(value, BaseModel):
		return value.model_dump(mode="json", by_alias=True)
	if isinstance(value, list):
		return [_jsonable(v) for v in value]
	return value


def _to_record(row: QuizSession) -> SessionRecord:
	data = row.data or {}
	return SessionRecord(
		id=row.id,
		game_id=row.game_id,
		steps=[StepEvent.model_validate(s) for s in data.get("steps") or []],
		meta=SessionMeta.model_validate(data.get("meta") or {}),
		steps_completed=row.steps_completed or 0,
		steps_total=row.steps_total,
		completed=bool(row.completed),
		result=row.result,
		last_active_at=row.last_active_at,
	)


class SqlSessionStore:
	"""Session store on SQLAlchemy; sync work runs in a worker thread."""

	def __init__(self, session_factory: sessionmaker = SessionLocal, *, game_id: Optional[str] = None) -> None:
		self._session_factory = session_factory
		self.game_id = game_id or settings.game_id

	async def _run(self, fn: Callable[..., T], *args: Any) -> T:
		try:
			return await asyncio.to_thread(fn, *args)
		except SQLAlchemyError as err:
			raise TransportFailure(f"Session store error: {err}", source="store") from err

	async def create(self, *, client_session_id: Optional[str] = None, steps_total: Optional[int] = None) -> SessionRecord:
		record = await self._run(self._create, client_session_id, steps_total)
		logger.info("Session created: %s", record.id)
		return record

	async def get(self, session_id: str) -> SessionRecord:
		return await self._run(self._get, session_id)

	async def update(self, session_id: str, partial: Dict[str, Any]) -> None:
		await self._run(self._update, session_id, partial)

	async def save_analysis(self, session_id: str, result: AnalysisResult) -> None:
		record = await self.get(session_id)
		meta = record.meta.model_copy(update={"end_time": utcnow()})
		await self.update(session_id, {"result": result, "completed": True, "meta": meta})
		logger.info("Analysis saved for session %s: metascore %d", session_id, result.metascore)

	async def population_stats(self, step_number: int, *, limit: int = 10) -> PopulationStats:
		return await self._run(self._population_stats, step_number, limit)

	# ---- sync helpers (worker thread) ----

	def _create(self, client_session_id: Optional[str], steps_total: Optional[int]) -> SessionRecord:
		now = datetime.utcnow()
		meta = SessionMeta(start_time=utcnow())
		row = QuizSession(
			id=uuid.uuid4().hex,
			game_id=self.game_id,
			client_session_id=client_session_id,
			data={"steps": [], "meta": _jsonable(meta)},
			result=None,
			steps_total=steps_total,
			steps_completed=0,
			completed=False,
			last_active_at=now,
		)
		with self._session_factory() as db:
			db.add(row)
			db.commit()
			db.refresh(row)
			return _to_record(row)

	def _load(self, db: Session, session_id: str) -> QuizSession:
		row = db.get(QuizSession, session_id)
		if row is None:
			raise SessionNotFound(session_id)
		return row

	def _get(self, session_id: str) -> SessionRecord:
		with self._session_factory() as db:
			return _to_record(self._load(db, session_id))

	def _update(self, session_id: str, partial: Dict[str, Any]) -> None:
		with self._session_factory() as db:
			row = self._load(db, session_id)
			# Assign a fresh dict so the JSON column is flagged dirty
			data = dict(row.data or {})
			if "steps" in partial:
				data["steps"] = _jsonable(list(partial["steps"]))
			if "meta" in partial:
				data["meta"] = _jsonable(partial["meta"])
			row.data = data
			if "steps_completed" in partial:
				row.steps_completed = int(partial["steps_completed"])
			if "steps_total" in partial:
				row.steps_total = partial["steps_total"]
			if "result" in partial:
				row.result = _jsonable(partial["result"])
			if "completed" in partial:
				row.completed = bool(partial["completed"])
			row.last_active_at = datetime.utcnow()
			db.commit()

	def _population_stats(self, step_number: int, limit: int) -> PopulationStats:
		responses: List[str] = []
		times: List[int] = []
		with self._session_factory() as db:
			rows = db.query(QuizSession).filter(QuizSession.game_id == self.game_id).all()
			for row in rows:
				for step in (row.data or {}).get("steps") or []:
					if step.get("stepNumber") != step_number:
						continue
					responses.append(str(step.get("userResponse", "")).lower().strip())
					times.append(int(step.get("responseTimeMs") or 0))
					break
		common = [CommonResponse(response=r, frequency=f) for r, f in Counter(responses).most_common(limit)]
		return PopulationStats(
			step_number=step_number,
			total_responses=len(responses),
			common_responses=common,
			average_response_time=sum(times) / len(times) if times else 0.0,
		)
