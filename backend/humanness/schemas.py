"""Pydantic models shared by the coalescer, the store and the HTTP layer.

Wire payloads use camelCase keys (``stepNumber``, ``userResponse``...), the
Python side uses snake_case; both spellings are accepted on input.
"""

from __future__ import annotations
import math
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _clamp_score(value: Any) -> int:
	if value is None or isinstance(value, bool):
		raise ValueError("score must be a number")
	if isinstance(value, str):
		value = value.strip().rstrip("%")
	try:
		number = float(value)
	except (TypeError, ValueError):
		raise ValueError(f"score must be a number, got {value!r}") from None
	if not math.isfinite(number):
		raise ValueError("score must be finite")
	return int(max(0, min(100, round(number))))


# 0-100 score; models return floats or out-of-range values often enough
Score = Annotated[int, BeforeValidator(_clamp_score)]


class CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	def to_wire(self) -> Dict[str, Any]:
		return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# STEP DATA
# ============================================================================

class StepEvent(CamelModel):
	"""One answered question as submitted by the quiz UI."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

	session_id: Optional[str] = None
	step_number: int = Field(ge=1)
	question_type: str = Field(min_length=1)
	question_id: Optional[str] = None
	question: Optional[str] = None
	user_response: str
	response_time_ms: int = Field(ge=0)
	timestamp: datetime = Field(default_factory=utcnow)

	@field_validator("user_response")
	@classmethod
	def _require_response(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("user response must not be blank")
		return value


class SessionMeta(CamelModel):
	total_response_time: int = 0
	average_response_time: int = 0
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None


class SessionRecord(CamelModel):
	id: str
	game_id: Optional[str] = None
	steps: List[StepEvent] = Field(default_factory=list)
	meta: SessionMeta = Field(default_factory=SessionMeta)
	steps_completed: int = 0
	steps_total: Optional[int] = None
	completed: bool = False
	result: Optional[Dict[str, Any]] = None
	last_active_at: Optional[datetime] = None


# ============================================================================
# ANALYSIS RESULT
# ============================================================================

HUMANENESS_BANDS = (
	(30, "ai-like"),
	(60, "borderline"),
	(85, "human-like"),
	(100, "very-human"),
)


def humaneness_band(metascore: int) -> str:
	for upper, label in HUMANENESS_BANDS:
		if metascore <= upper:
			return label
	return HUMANENESS_BANDS[-1][1]


class Subscores(CamelModel):
	creativity: Score
	spontaneity: Score
	authenticity: Score


class Personality(BaseModel):
	# Axis names stay snake_case on the wire, matching the analysis prompt
	model_config = ConfigDict(extra="ignore")

	creative_conventional: Score
	analytical_intuitive: Score
	emotional_logical: Score
	spontaneous_calculated: Score
	abstract_concrete: Score
	divergent_convergent: Score


class Archetype(CamelModel):
	name: str
	description: str = ""
	traits: List[str] = Field(default_factory=list)


class BreakdownItem(CamelModel):
	step_number: int
	percentile: Score
	ai_likelihood: Score
	human_likelihood: Score
	insight: str = ""
	highlight: Optional[str] = None
	was_unexpected: Optional[bool] = None
	question_id: Optional[str] = None
	ai_examples: Dict[str, str] = Field(default_factory=dict)


class AnalysisResult(CamelModel):
	metascore: Score
	humaneness_level: Optional[str] = None
	subscores: Subscores
	personality: Personality
	breakdown: List[BreakdownItem] = Field(default_factory=list)
	primary_archetype: Optional[Archetype] = None
	overall_analysis: Optional[str] = None

	@model_validator(mode="after")
	def _fill_level(self) -> "AnalysisResult":
		if not self.humaneness_level:
			self.humaneness_level = humaneness_band(self.metascore)
		return self


# ============================================================================
# HTTP PAYLOADS
# ============================================================================

class StartSessionRequest(CamelModel):
	client_session_id: Optional[str] = None


class AnalyzeRequest(CamelModel):
	steps: List[StepEvent]
	average_response_time: Optional[float] = None


class SaveAnalysisRequest(CamelModel):
	analysis: AnalysisResult


class CommonResponse(CamelModel):
	response: str
	frequency: int


class PopulationStats(CamelModel):
	step_number: int
	total_responses: int
	common_responses: List[CommonResponse]
	average_response_time: float
