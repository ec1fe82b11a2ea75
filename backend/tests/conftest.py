import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from humanness.errors import SessionNotFound, TransportFailure
from humanness.schemas import SessionRecord, StepEvent


class MemoryStore:
    """In-process session store that records every write."""

    def __init__(self, *, failing: Optional[set] = None, delay: float = 0.0):
        self.records: Dict[str, SessionRecord] = {}
        self.updates: List[Dict[str, Any]] = []
        self.failing = set(failing or ())
        self.delay = delay

    def add(self, session_id: str, **fields) -> SessionRecord:
        record = SessionRecord(id=session_id, **fields)
        self.records[session_id] = record
        return record

    async def get(self, session_id: str) -> SessionRecord:
        await asyncio.sleep(self.delay)
        if session_id in self.failing:
            raise TransportFailure(f"store unreachable for {session_id}", source="store")
        if session_id not in self.records:
            raise SessionNotFound(session_id)
        return self.records[session_id]

    async def update(self, session_id: str, partial: Dict[str, Any]) -> None:
        await asyncio.sleep(self.delay)
        before = self.records[session_id]
        self.updates.append(
            {
                "session_id": session_id,
                "new_steps": len(partial["steps"]) - len(before.steps),
                "partial": partial,
            }
        )
        self.records[session_id] = before.model_copy(update=partial)


class FakeProvider:
    """Stands in for a ProviderClient; replies in order or raises."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def send(self, messages, **kwargs) -> str:
        self.calls.append({"messages": list(messages), **kwargs})
        reply = self.replies[min(len(self.calls), len(self.replies)) - 1] if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def aclose(self) -> None:
        pass


def make_step(step_number: int, response: str = "a lighthouse keeper", **overrides) -> StepEvent:
    fields = {
        "step_number": step_number,
        "question_type": "open-ended",
        "question": f"Question number {step_number}?",
        "user_response": response,
        "response_time_ms": 4200,
    }
    fields.update(overrides)
    return StepEvent(**fields)


def analysis_payload(metascore=72, steps=(1, 2), **overrides):
    """A well-formed analysis body as a provider would return it."""
    payload = {
        "metascore": metascore,
        "subscores": {"creativity": 80, "spontaneity": 64, "authenticity": 71},
        "personality": {
            "creative_conventional": 70,
            "analytical_intuitive": 55,
            "emotional_logical": 60,
            "spontaneous_calculated": 65,
            "abstract_concrete": 40,
            "divergent_convergent": 68,
        },
        "breakdown": [
            {"stepNumber": n, "insight": f"Insight {n}", "percentile": 50 + n, "aiLikelihood": 30, "humanLikelihood": 70}
            for n in steps
        ],
        "primaryArchetype": {"name": "The Creative", "description": "Original", "traits": ["Imaginative"]},
        "overallAnalysis": "Mostly human.",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def memory_store():
    return MemoryStore()
