from __future__ import annotations
import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from .errors import TransportFailure
from .extraction import extract_section
from .llm_client import ProviderClient
from .prompts import ANSWER_TAG, BASELINE_SYSTEM_PROMPT, build_baseline_prompt
from .schemas import StepEvent

logger = logging.getLogger(__name__)

# step_number -> that provider's answer
BaselineAnswerSet = Dict[int, str]


class BaselineOrchestrator:
	"""Ask every configured provider the same batch of questions, in parallel.

	A provider that is not configured, fails, or times out contributes an empty
	answer set; it never fails the orchestration. Answers are recovered per
	question from ``<answer_N>`` tags, and a missing tag leaves that entry out.
	"""

	def __init__(
		self,
		providers: Mapping[str, Optional[ProviderClient]],
		*,
		timeout: float = 45.0,
		max_tokens: int = 2000,
		temperature: float = 0.7,
	) -> None:
		self.providers = dict(providers)
		self.timeout = timeout
		self.max_tokens = max_tokens
		self.temperature = temperature

	async def generate(self, steps: Sequence[StepEvent]) -> Dict[str, BaselineAnswerSet]:
		ordered = sorted(steps, key=lambda s: s.step_number)
		if not ordered or not self.providers:
			return {name: {} for name in self.providers}
		prompt = build_baseline_prompt(ordered)
		names = list(self.providers)
		outcomes = await asyncio.gather(
			*(self._ask(name, self.providers[name], prompt, ordered) for name in names),
			return_exceptions=True,
		)
		baselines: Dict[str, BaselineAnswerSet] = {}
		for name, outcome in zip(names, outcomes):
			if isinstance(outcome, BaseException):
				logger.error("Baseline provider %s crashed: %r", name, outcome)
				baselines[name] = {}
			else:
				baselines[name] = outcome
		return baselines

	async def _ask(
		self,
		name: str,
		client: Optional[ProviderClient],
		prompt: str,
		steps: Sequence[StepEvent],
	) -> BaselineAnswerSet:
		if client is None:
			logger.warning("Baseline provider %s is not configured, skipping", name)
			return {}
		try:
			raw = await asyncio.wait_for(
				client.send(
					[{"role": "user", "content": prompt}],
					system_prompt=BASELINE_SYSTEM_PROMPT,
					temperature=self.temperature,
					max_tokens=self.max_tokens,
					timeout=self.timeout,
				),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			logger.warning("Baseline provider %s timed out after %.0fs", name, self.timeout)
			return {}
		except TransportFailure as err:
			logger.warning("Baseline provider %s failed: %s", name, err)
			return {}
		return parse_baseline_answers(name, raw, steps)


def parse_baseline_answers(provider: str, raw: str, steps: Sequence[StepEvent]) -> BaselineAnswerSet:
	answers: BaselineAnswerSet = {}
	for index, step in enumerate(steps, start=1):
		text = extract_section(raw, index, ANSWER_TAG)
		if text is None:
			logger.warning("Baseline provider %s: no <%s_%d> block for step %d", provider, ANSWER_TAG, index, step.step_number)
			continue
		answers[step.step_number] = text
	return answers


def missing_baselines(
	baselines: Mapping[str, Mapping[int, str]],
	step_numbers: Sequence[int],
) -> Dict[str, List[int]]:
	"""Steps each provider has no answer for; empty dict means a complete set."""
	missing: Dict[str, List[int]] = {}
	for provider, answers in baselines.items():
		gaps = [n for n in step_numbers if n not in answers]
		if gaps:
			missing[provider] = gaps
	return missing
