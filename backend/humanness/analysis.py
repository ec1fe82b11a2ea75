from __future__ import annotations
import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from .baselines import BaselineOrchestrator
from .errors import AnalysisUnavailable, MalformedResponse, TransportFailure
from .extraction import extract_json
from .llm_client import ProviderClient
from .prompts import ANALYSIS_SYSTEM_PROMPT, analysis_messages, build_analysis_prompt
from .schemas import AnalysisResult, StepEvent

logger = logging.getLogger(__name__)


def parse_analysis(raw: str) -> AnalysisResult:
	data = extract_json(raw)
	try:
		return AnalysisResult.model_validate(data)
	except ValidationError as err:
		raise MalformedResponse(f"Analysis JSON does not match the expected shape: {err.error_count()} error(s)") from err


class ComparativeAnalyzer:
	"""Score the user's answers against the baselines with one provider call.

	``chain`` is tried in order, each provider at most once: a provider without
	a credential is skipped, one that fails in transport or returns output that
	cannot be parsed hands over to the next. When the chain is exhausted the
	request fails with ``AnalysisUnavailable``.
	"""

	def __init__(
		self,
		chain: Sequence[Tuple[str, Optional[ProviderClient]]],
		*,
		timeout: float = 90.0,
		max_tokens: int = 4000,
		temperature: float = 0.4,
	) -> None:
		self.chain = list(chain)
		self.timeout = timeout
		self.max_tokens = max_tokens
		self.temperature = temperature

	async def analyze(
		self,
		steps: Sequence[StepEvent],
		baselines: Mapping[str, Mapping[int, str]],
		*,
		average_response_time: Optional[float] = None,
	) -> AnalysisResult:
		ordered = sorted(steps, key=lambda s: s.step_number)
		prompt = build_analysis_prompt(ordered, baselines, average_response_time)
		failures: List[Tuple[str, Exception]] = []
		for name, client in self.chain:
			if client is None:
				logger.warning("Analysis provider %s is not configured, skipping", name)
				continue
			try:
				raw = await asyncio.wait_for(
					client.send(
						analysis_messages(prompt),
						system_prompt=ANALYSIS_SYSTEM_PROMPT,
						temperature=self.temperature,
						max_tokens=self.max_tokens,
						timeout=self.timeout,
					),
					timeout=self.timeout,
				)
				result = parse_analysis(raw)
			except asyncio.TimeoutError:
				err = TransportFailure(f"{name} timed out after {self.timeout:.0f}s", source=name)
				logger.warning("Analysis provider %s failed: %s", name, err)
				failures.append((name, err))
				continue
			except (TransportFailure, MalformedResponse) as err:
				logger.warning("Analysis provider %s failed: %s", name, err)
				failures.append((name, err))
				continue
			except Exception as err:
				logger.exception("Analysis provider %s raised unexpectedly", name)
				failures.append((name, err))
				continue
			if len(result.breakdown) < len(ordered):
				logger.warning(
					"Analysis from %s covers %d of %d steps",
					name,
					len(result.breakdown),
					len(ordered),
				)
			logger.info("Analysis complete via %s: metascore %d (%s)", name, result.metascore, result.humaneness_level)
			return result
		logger.error("Analysis chain exhausted: %s", failures or "no provider configured")
		raise AnalysisUnavailable(failures)


def enrich_breakdown(
	result: AnalysisResult,
	baselines: Mapping[str, Mapping[int, str]],
) -> AnalysisResult:
	"""Copy of ``result`` whose breakdown items carry every provider's baseline answer."""
	enriched = result.model_copy(deep=True)
	for item in enriched.breakdown:
		examples: Dict[str, str] = dict(item.ai_examples)
		for provider, answers in baselines.items():
			examples[provider] = answers.get(item.step_number) or ""
		item.ai_examples = examples
	return enriched


async def run_analysis(
	steps: Sequence[StepEvent],
	orchestrator: BaselineOrchestrator,
	analyzer: ComparativeAnalyzer,
	*,
	average_response_time: Optional[float] = None,
) -> Tuple[AnalysisResult, Dict[str, Dict[int, str]]]:
	baselines = await orchestrator.generate(steps)
	result = await analyzer.analyze(steps, baselines, average_response_time=average_response_time)
	return enrich_breakdown(result, baselines), baselines
