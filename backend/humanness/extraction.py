"""
Recovery of structured data from free-text LLM output.

Two independent helpers live here:

- ``extract_json`` pulls a JSON object out of a reply that may wrap it in a
  markdown fence, surround it with prose, or carry small syntax defects such as
  trailing commas and comments.
- ``extract_section`` pulls one ``<answer_N>...</answer_N>`` block out of a
  batched reply. It never raises; absence is a normal outcome.
"""

from __future__ import annotations
import json
import re
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from .errors import MalformedResponse

# ```json ... ``` or a bare ``` ... ``` fence
_CODE_FENCE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?([\s\S]*?)```")

# Each repair pattern matches string literals first so their contents are kept
_STRING = r'"(?:\\.|[^"\\])*"'
_BLOCK_COMMENT = re.compile(_STRING + r"|/\*[\s\S]*?\*/")
_LINE_COMMENT = re.compile(_STRING + r"|//[^\r\n]*")
_TRAILING_COMMA = re.compile(_STRING + r"|,(\s*[}\]])")


def _keep_strings(pattern: re.Pattern[str], text: str, replacement: Callable[[re.Match[str]], str]) -> str:
	def _sub(match: re.Match[str]) -> str:
		if match.group(0).startswith('"'):
			return match.group(0)
		return replacement(match)

	return pattern.sub(_sub, text)


def strip_block_comments(text: str) -> str:
	return _keep_strings(_BLOCK_COMMENT, text, lambda m: "")


def strip_line_comments(text: str) -> str:
	return _keep_strings(_LINE_COMMENT, text, lambda m: "")


def strip_trailing_commas(text: str) -> str:
	return _keep_strings(_TRAILING_COMMA, text, lambda m: m.group(1))


# Comments go first so a comma followed by a comment still counts as trailing
REPAIRS: Tuple[Callable[[str], str], ...] = (
	strip_block_comments,
	strip_line_comments,
	strip_trailing_commas,
)


def repair_json_text(text: str) -> str:
	for step in REPAIRS:
		text = step(text)
	return text.strip()


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
	fence = _CODE_FENCE.search(text)
	if fence:
		yield "code_fence", fence.group(1)
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last > first:
		yield "braces", text[first : last + 1]
	yield "raw", text.strip()


def extract_json(raw_text: str) -> Dict[str, Any]:
	"""Return the first JSON object recoverable from ``raw_text``.

	Candidates are tried in order: the contents of a fenced code block, the span
	from the first ``{`` to the last ``}``, then the whole trimmed text. Each
	candidate goes through ``REPAIRS`` before parsing.

	Raises:
		MalformedResponse: If no candidate parses to a JSON object.
	"""
	if not raw_text or not raw_text.strip():
		raise MalformedResponse("Model returned an empty response")
	last_error: Optional[Exception] = None
	for _, candidate in _candidates(raw_text):
		try:
			parsed = json.loads(repair_json_text(candidate))
		except ValueError as err:
			last_error = err
			continue
		if isinstance(parsed, dict):
			return parsed
		last_error = ValueError(f"expected a JSON object, got {type(parsed).__name__}")
	raise MalformedResponse(f"Model did not return valid JSON ({last_error})")


def extract_section(raw_text: Optional[str], index: int, tag: str = "answer") -> Optional[str]:
	"""Inner text of ``<tag_index>...</tag_index>``, or None when the pair is missing."""
	if not raw_text:
		return None
	name = re.escape(f"{tag}_{index}")
	match = re.search(rf"<{name}>([\s\S]*?)</{name}>", raw_text, re.IGNORECASE)
	if not match:
		return None
	return match.group(1).strip()
