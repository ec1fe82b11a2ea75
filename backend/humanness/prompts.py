from __future__ import annotations
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .schemas import StepEvent

# Word-count window around the user's answer length
LENGTH_TOLERANCE = 0.2
MIN_BASELINE_WORDS = 5

ANSWER_TAG = "answer"

BASELINE_SYSTEM_PROMPT = (
	"You are answering a short personality quiz exactly as you normally would. "
	"Answer every question directly, in your own default voice, and respect the requested length."
)

ANALYSIS_SYSTEM_PROMPT = (
	"You craft psychological insights grounded in concrete evidence and always respond with valid JSON."
)


def word_count(text: str) -> int:
	return len((text or "").split())


def length_bounds(user_response: str) -> Tuple[int, int]:
	"""Target (min, max) word count: the user's length +/-20%, never below the floor."""
	words = word_count(user_response)
	low = max(1, math.floor(words * (1 - LENGTH_TOLERANCE)))
	high = max(MIN_BASELINE_WORDS, math.ceil(words * (1 + LENGTH_TOLERANCE)))
	return min(low, high), high


def _question_text(step: StepEvent) -> str:
	return (step.question or "").strip() or f"({step.question_type} question #{step.step_number})"


def build_baseline_prompt(steps: Sequence[StepEvent]) -> str:
	blocks: List[str] = []
	for index, step in enumerate(steps, start=1):
		low, high = length_bounds(step.user_response)
		blocks.append(
			f"Question {index} ({step.question_type}):\n"
			f"{_question_text(step)}\n"
			f"Length: answer in {low}-{high} words.\n"
			f"Wrap your answer in <{ANSWER_TAG}_{index}></{ANSWER_TAG}_{index}>."
		)
	count = len(steps)
	return (
		f"Answer the following {count} questions. Treat each one independently.\n\n"
		+ "\n\n".join(blocks)
		+ "\n\nRules:\n"
		f"- Return exactly {count} tagged answers, from <{ANSWER_TAG}_1> to <{ANSWER_TAG}_{count}>.\n"
		"- Put nothing but the answer inside each tag: no labels, no meta-commentary.\n"
		"- Stay inside the requested word range for each answer."
	)


SCORING_RUBRIC = """## Analysis Framework

### Humanness indicators (positive)
1. Spontaneity and unpredictability: unexpected word choices, creative interpretations
2. Emotional authenticity: humour, frustration, sarcasm, playfulness
3. Personal touch: use of "I", anecdotes, colloquialisms, subjective opinions
4. Imperfection: typos, incomplete thoughts, casual language
5. Response time variance: natural variation in thinking time

### AI-like indicators (negative)
1. Over-formality and complete, polished sentences throughout
2. Comprehensiveness: structured, exhaustive answers
3. Generic politeness and neutral, balanced tone
4. Close similarity to the AI baseline answers shown for the same question
5. Suspiciously fast (<500ms) or mechanically uniform response times

### Score bands
- Metascore 0-30: ai-like (generic, predictable, close to the baselines)
- Metascore 31-60: borderline (mixed human traits and AI patterns)
- Metascore 61-85: human-like (natural variance, authentic, contextual)
- Metascore 86-100: very-human (highly creative, emotionally rich, far from the baselines)
- Percentile: 100 means extremely rare compared with typical and AI answers; keep between 5 and 95 unless dramatically unique
- aiLikelihood / humanLikelihood: 0-100 chance that an AI / a human would give this answer"""

OUTPUT_FORMAT = """## Output format
Return ONLY valid JSON (no trailing commas, no comments) with this structure:

```json
{
  "metascore": 75,
  "humanenessLevel": "human-like",
  "subscores": {"creativity": 82, "spontaneity": 71, "authenticity": 73},
  "personality": {
    "creative_conventional": 70,
    "analytical_intuitive": 55,
    "emotional_logical": 60,
    "spontaneous_calculated": 65,
    "abstract_concrete": 40,
    "divergent_convergent": 68
  },
  "breakdown": [
    {
      "stepNumber": 1,
      "insight": "Specific and personal answer, nothing like the baselines",
      "percentile": 85,
      "aiLikelihood": 20,
      "humanLikelihood": 80,
      "wasUnexpected": true,
      "highlight": "Optional notable observation"
    }
  ],
  "primaryArchetype": {"name": "The Creative", "description": "...", "traits": ["Imaginative", "Original"]},
  "overallAnalysis": "2-3 sentence summary"
}
```"""


def build_analysis_prompt(
	steps: Sequence[StepEvent],
	baselines: Mapping[str, Mapping[int, str]],
	average_response_time: Optional[float] = None,
) -> str:
	if average_response_time is None:
		average_response_time = (
			sum(s.response_time_ms for s in steps) / len(steps) if steps else 0.0
		)
	sections: List[str] = []
	for step in steps:
		lines = [
			f"**Question {step.step_number}** ({step.question_type}):",
			f"Q: {_question_text(step)}",
			f'User response: "{step.user_response}"',
			f"Response time: {step.response_time_ms}ms",
			"AI baselines:",
		]
		for provider, answers in baselines.items():
			lines.append(f"- {provider}: {answers.get(step.step_number) or 'N/A'}")
		if not baselines:
			lines.append("- N/A")
		sections.append("\n".join(lines))
	return (
		"Analyze how human versus AI-like the following quiz answers are. "
		"Compare each user answer with the AI baseline answers given for the same question.\n\n"
		"## User response data\n\n"
		+ "\n\n".join(sections)
		+ f"\n\nAverage response time: {average_response_time:.0f}ms\n\n"
		+ SCORING_RUBRIC
		+ "\n\n"
		+ OUTPUT_FORMAT
		+ f"\n\nIMPORTANT: provide ALL {len(steps)} breakdown entries, one per question, using the question numbers above as stepNumber."
	)


def analysis_messages(prompt: str) -> List[Dict[str, str]]:
	return [{"role": "user", "content": prompt}]
