"""
Step ingestion coalescer.

Quiz clients report every answered question as soon as it is submitted. Rather
than doing one read-merge-write against the session store per answer, events
are collected in a pending batch and written per session in one go, either
when the batch reaches ``batch_size`` or ``flush_delay`` seconds after the
first event of the batch arrived (the timer is never re-armed by later events,
which bounds the latency of the oldest event).

The batch and its timer are the only shared mutable state. They are only
touched in synchronous sections, so taking a batch is a swap-and-clear that no
concurrent ``submit`` can interleave with. Writes for one session are serialized
so overlapping rounds always re-read what the previous round wrote.
"""

from __future__ import annotations
import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Union

from pydantic import ValidationError

from .errors import ValidationFailure
from .schemas import SessionMeta, SessionRecord, StepEvent, utcnow

logger = logging.getLogger(__name__)

MIN_PLAUSIBLE_RESPONSE_MS = 100
MAX_PLAUSIBLE_RESPONSE_MS = 10 * 60 * 1000


class SessionStore(Protocol):
	async def get(self, session_id: str) -> SessionRecord: ...

	async def update(self, session_id: str, partial: Dict[str, Any]) -> None: ...


@dataclass
class _PendingStep:
	session_id: str
	step: StepEvent
	done: asyncio.Future


def validate_step(session_id: Optional[str], event: Union[StepEvent, Mapping[str, Any]]) -> StepEvent:
	if not session_id or not str(session_id).strip():
		raise ValidationFailure("Invalid session. Please try again.")
	session_id = str(session_id).strip()
	if isinstance(event, StepEvent):
		step = event
	else:
		try:
			step = StepEvent.model_validate(event)
		except ValidationError as err:
			raise ValidationFailure(f"Invalid step data: {err.error_count()} field error(s)") from err
	if step.session_id and step.session_id != session_id:
		raise ValidationFailure("Step belongs to a different session")
	if step.session_id != session_id:
		step = step.model_copy(update={"session_id": session_id})
	return step


def summarize_steps(steps: List[StepEvent], previous: Optional[SessionMeta], steps_total: Optional[int] = None) -> SessionMeta:
	previous = previous or SessionMeta()
	total = sum(s.response_time_ms for s in steps)
	average = round(total / len(steps)) if steps else 0
	end_time = previous.end_time
	if steps_total and len(steps) >= steps_total and end_time is None:
		end_time = utcnow()
	return SessionMeta(
		total_response_time=total,
		average_response_time=average,
		start_time=previous.start_time or utcnow(),
		end_time=end_time,
	)


class StepCoalescer:
	def __init__(
		self,
		store: SessionStore,
		*,
		batch_size: int = 3,
		flush_delay: float = 1.0,
		steps_total: Optional[int] = None,
	) -> None:
		if batch_size < 1:
			raise ValueError("batch_size must be at least 1")
		self._store = store
		self.batch_size = batch_size
		self.flush_delay = flush_delay
		self.steps_total = steps_total
		self._pending: List[_PendingStep] = []
		self._timer: Optional[asyncio.TimerHandle] = None
		self._inflight: Set[asyncio.Task] = set()
		# Serializes read-merge-write per session across overlapping rounds
		self._session_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
		self.rounds = 0

	@property
	def pending_count(self) -> int:
		return len(self._pending)

	async def submit(self, session_id: str, event: Union[StepEvent, Mapping[str, Any]]) -> Dict[str, Any]:
		"""Queue one step and wait until its batch has been persisted.

		Returns ``{"success": True, ...}`` once written; raises the store error
		if that session's write failed, or ``ValidationFailure`` up front.
		"""
		step = validate_step(session_id, event)
		session_id = step.session_id
		if not MIN_PLAUSIBLE_RESPONSE_MS <= step.response_time_ms <= MAX_PLAUSIBLE_RESPONSE_MS:
			logger.warning(
				"Suspicious response time %dms for session %s step %d",
				step.response_time_ms,
				session_id,
				step.step_number,
			)
		loop = asyncio.get_running_loop()
		done = loop.create_future()
		self._pending.append(_PendingStep(session_id, step, done))
		if len(self._pending) >= self.batch_size:
			self._spawn(self._write_batch(self._take_batch()))
		elif self._timer is None:
			self._timer = loop.call_later(self.flush_delay, self._on_timer)
		return await done

	async def flush(self) -> int:
		"""Persist whatever is pending now; returns how many events were taken."""
		batch = self._take_batch()
		await self._write_batch(batch)
		return len(batch)

	async def drain(self) -> int:
		"""Flush the trailing batch and wait for in-flight flushes (shutdown)."""
		count = await self.flush()
		while self._inflight:
			await asyncio.gather(*list(self._inflight), return_exceptions=True)
		return count

	def _take_batch(self) -> List[_PendingStep]:
		batch, self._pending = self._pending, []
		if self._timer is not None:
			self._timer.cancel()
			self._timer = None
		return batch

	def _on_timer(self) -> None:
		self._timer = None
		self._spawn(self.flush())

	def _spawn(self, coro) -> None:
		task = asyncio.ensure_future(coro)
		self._inflight.add(task)
		task.add_done_callback(self._inflight.discard)

	async def _write_batch(self, batch: List[_PendingStep]) -> None:
		if not batch:
			return
		self.rounds += 1
		groups: Dict[str, List[_PendingStep]] = {}
		for item in batch:
			groups.setdefault(item.session_id, []).append(item)
		logger.debug("Flushing %d step(s) across %d session(s)", len(batch), len(groups))
		outcomes = await asyncio.gather(
			*(self._write_session(sid, entries) for sid, entries in groups.items()),
			return_exceptions=True,
		)
		for entries, outcome in zip(groups.values(), outcomes):
			if isinstance(outcome, BaseException):
				_settle(entries, error=outcome)

	def _lock_for(self, session_id: str) -> asyncio.Lock:
		lock = self._session_locks.get(session_id)
		if lock is None:
			lock = asyncio.Lock()
			self._session_locks[session_id] = lock
		return lock

	async def _write_session(self, session_id: str, entries: List[_PendingStep]) -> None:
		async with self._lock_for(session_id):
			await self._merge_session(session_id, entries)

	async def _merge_session(self, session_id: str, entries: List[_PendingStep]) -> None:
		try:
			record = await self._store.get(session_id)
			existing = list(record.steps or [])
			known = {s.step_number for s in existing}
			for entry in entries:
				if entry.step.step_number in known:
					logger.warning("Session %s already has step %d; appending anyway", session_id, entry.step.step_number)
				known.add(entry.step.step_number)
			merged = existing + [e.step for e in entries]
			meta = summarize_steps(merged, record.meta, record.steps_total or self.steps_total)
			await self._store.update(
				session_id,
				{"steps": merged, "meta": meta, "steps_completed": len(merged)},
			)
		except Exception as err:
			logger.error("Failed to persist %d step(s) for session %s: %s", len(entries), session_id, err)
			_settle(entries, error=err)
			return
		_settle(entries, result={"success": True, "sessionId": session_id, "stepsCompleted": len(merged)})


def _settle(entries: List[_PendingStep], *, result: Any = None, error: Optional[BaseException] = None) -> None:
	for entry in entries:
		if entry.done.done():
			continue
		if error is not None:
			entry.done.set_exception(error)
		else:
			entry.done.set_result(result)
