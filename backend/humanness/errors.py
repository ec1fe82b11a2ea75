from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple


class HumannessError(Exception):
	"""Base class for errors surfaced to API callers as a structured body."""

	code: str = "internal_error"
	status_code: int = 500
	retryable: bool = False

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message

	def to_dict(self) -> Dict[str, Any]:
		return {
			"success": False,
			"error": self.message,
			"code": self.code,
			"retryable": self.retryable,
		}


class ValidationFailure(HumannessError):
	code = "invalid_input"
	status_code = 400


class SessionNotFound(HumannessError):
	code = "session_not_found"
	status_code = 404

	def __init__(self, session_id: str) -> None:
		super().__init__(f"Session {session_id} not found")
		self.session_id = session_id


class TransportFailure(HumannessError):
	"""Network, timeout or non-2xx failure talking to a provider or the store."""

	code = "transport_failure"
	status_code = 502
	retryable = True

	def __init__(self, message: str, *, source: Optional[str] = None) -> None:
		super().__init__(message)
		self.source = source


class ProviderTimeout(TransportFailure):
	code = "provider_timeout"
	status_code = 504


class ProviderHTTPError(TransportFailure):
	def __init__(self, source: str, status: int, body: str = "") -> None:
		super().__init__(f"{source} returned HTTP {status}: {body[:200]}", source=source)
		self.status = status


class MalformedResponse(HumannessError):
	code = "malformed_response"
	status_code = 502
	retryable = True


class AnalysisUnavailable(HumannessError):
	"""Every provider in the analysis chain failed or was not configured."""

	code = "analysis_unavailable"
	status_code = 503
	retryable = True

	def __init__(self, failures: List[Tuple[str, Exception]]) -> None:
		detail = "; ".join(f"{name}: {err}" for name, err in failures) or "no analysis provider configured"
		super().__init__(f"Analysis unavailable, please retry ({detail})")
		self.failures = failures
