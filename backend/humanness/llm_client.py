from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import ProviderHTTPError, ProviderTimeout, TransportFailure
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class ProviderClient:
	"""Send chat turns to one LLM provider and get plain text back.

	Subclasses only describe the request/response envelope; transport errors
	are mapped here so callers see ``ProviderTimeout``, ``ProviderHTTPError`` or
	``TransportFailure`` and never raw httpx exceptions. An empty completion is
	returned as ``""``.
	"""

	name = "provider"

	def __init__(
		self,
		api_key: Optional[str],
		*,
		model: str,
		base_url: str,
		timeout: float = 30.0,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		if not api_key:
			raise ValueError(f"{self.name} API key is not configured")
		self.api_key = api_key
		self.model = model
		self.base_url = base_url
		self.timeout = timeout
		self._client = client or httpx.AsyncClient(timeout=timeout)

	async def send(
		self,
		messages: Sequence[Message],
		*,
		system_prompt: Optional[str] = None,
		model: Optional[str] = None,
		temperature: float = 0.7,
		max_tokens: int = 1000,
		timeout: Optional[float] = None,
	) -> str:
		url, params, headers, payload = self._build_request(
			list(messages),
			system_prompt=system_prompt,
			model=model or self.model,
			temperature=temperature,
			max_tokens=max_tokens,
		)
		data = await self._post(url, params=params, headers=headers, payload=payload, timeout=timeout)
		try:
			return self._extract_text(data)
		except (KeyError, IndexError, TypeError, AttributeError) as err:
			raise TransportFailure(f"Unexpected {self.name} response shape: {err!r}", source=self.name) from err

	async def _post(
		self,
		url: str,
		*,
		params: Dict[str, Any],
		headers: Dict[str, str],
		payload: Dict[str, Any],
		timeout: Optional[float],
	) -> Any:
		try:
			r = await self._client.post(url, params=params, headers=headers, json=payload, timeout=timeout or self.timeout)
			r.raise_for_status()
		except httpx.TimeoutException as err:
			raise ProviderTimeout(f"{self.name} timed out after {timeout or self.timeout}s", source=self.name) from err
		except httpx.HTTPStatusError as err:
			raise ProviderHTTPError(self.name, err.response.status_code, err.response.text) from err
		except httpx.RequestError as err:
			raise TransportFailure(f"{self.name} request failed: {err}", source=self.name) from err
		try:
			return r.json()
		except ValueError as err:
			raise TransportFailure(f"Unexpected {self.name} response: {r.text[:200]}", source=self.name) from err

	def _build_request(self, messages: List[Message], *, system_prompt: Optional[str], model: str, temperature: float, max_tokens: int):
		raise NotImplementedError

	def _extract_text(self, data: Any) -> str:
		raise NotImplementedError

	async def aclose(self) -> None:
		await self._client.aclose()


class OpenAIChatClient(ProviderClient):
	"""OpenAI-compatible ``/chat/completions`` (OpenAI, Groq, OpenRouter)."""

	name = "openai"

	def _headers(self) -> Dict[str, str]:
		return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

	def _build_request(self, messages, *, system_prompt, model, temperature, max_tokens):
		turns = list(messages)
		if system_prompt:
			turns = [{"role": "system", "content": system_prompt}] + turns
		payload: Dict[str, Any] = {
			"model": model,
			"messages": turns,
			"temperature": temperature,
			"max_tokens": max_tokens,
		}
		return self.base_url, {}, self._headers(), payload

	def _extract_text(self, data: Any) -> str:
		return data["choices"][0]["message"].get("content") or ""


class GroqClient(OpenAIChatClient):
	name = "groq"


class OpenRouterClient(OpenAIChatClient):
	name = "openrouter"

	def __init__(self, api_key: Optional[str], *, referer: str = "", title: str = "", **kwargs: Any) -> None:
		super().__init__(api_key, **kwargs)
		self._extra_headers = {"HTTP-Referer": referer, "X-Title": title}

	def _headers(self) -> Dict[str, str]:
		headers = super()._headers()
		headers.update({k: v for k, v in self._extra_headers.items() if v})
		return headers


class AnthropicClient(ProviderClient):
	name = "anthropic"

	def __init__(self, api_key: Optional[str], *, version: str = "2023-06-01", **kwargs: Any) -> None:
		super().__init__(api_key, **kwargs)
		self.version = version

	def _build_request(self, messages, *, system_prompt, model, temperature, max_tokens):
		headers = {
			"x-api-key": self.api_key,
			"anthropic-version": self.version,
			"Content-Type": "application/json",
		}
		payload: Dict[str, Any] = {
			"model": model,
			"max_tokens": max_tokens,
			"temperature": temperature,
			"messages": [m for m in messages if m.get("role") != "system"],
		}
		if system_prompt:
			payload["system"] = system_prompt
		return self.base_url, {}, headers, payload

	def _extract_text(self, data: Any) -> str:
		blocks = data["content"]
		return "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")


class GeminiClient(ProviderClient):
	name = "gemini"

	def __init__(
		self,
		api_key: Optional[str],
		*,
		model: str,
		provider: str = "ai_studio",
		vertex_region: str = "us-central1",
		vertex_project: Optional[str] = None,
		base_url: Optional[str] = None,
		**kwargs: Any,
	) -> None:
		self.provider = provider
		self._vertex_region = vertex_region
		self._vertex_project = vertex_project or "placeholder-project"
		super().__init__(api_key, model=model, base_url=base_url or "", **kwargs)
		self._auth_in_query = provider != "vertex"

	def _url_for(self, model: str) -> str:
		if self.base_url:
			return self.base_url
		if self.provider == "vertex":
			# Vertex AI Generative REST endpoint (API key via header)
			region = self._vertex_region
			return (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{self._vertex_project}/locations/{region}/publishers/google/models/{model}:generateContent"
			)
		# Google AI Studio (Generative Language API)
		return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

	def _build_request(self, messages, *, system_prompt, model, temperature, max_tokens):
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		contents = [
			{"role": "model" if m.get("role") == "assistant" else "user", "parts": [{"text": m.get("content", "")}]}
			for m in messages
			if m.get("role") != "system"
		]
		payload: Dict[str, Any] = {
			"contents": contents,
			"generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
		}
		if system_prompt:
			payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
		return self._url_for(model), params, headers, payload

	def _extract_text(self, data: Any) -> str:
		candidates = data.get("candidates") or []
		if not candidates:
			return ""
		parts = (candidates[0].get("content") or {}).get("parts") or []
		return "".join(p.get("text", "") for p in parts)


PROVIDER_NAMES = ("openai", "anthropic", "gemini", "groq", "openrouter")


def build_provider(
	name: str,
	config: Optional[Settings] = None,
	*,
	client: Optional[httpx.AsyncClient] = None,
) -> Optional[ProviderClient]:
	"""Client for ``name`` or None when its credential is absent."""
	cfg = config or default_settings
	name = name.strip().lower()
	try:
		if name == "openai":
			return OpenAIChatClient(cfg.openai_api_key, model=cfg.openai_model, base_url=cfg.openai_base_url, client=client)
		if name == "anthropic":
			return AnthropicClient(
				cfg.anthropic_api_key,
				model=cfg.anthropic_model,
				base_url=cfg.anthropic_base_url,
				version=cfg.anthropic_version,
				client=client,
			)
		if name == "gemini":
			return GeminiClient(
				cfg.gemini_api_key,
				model=cfg.gemini_model,
				provider=cfg.gemini_provider,
				vertex_region=cfg.vertex_region,
				vertex_project=cfg.vertex_project,
				client=client,
			)
		if name == "groq":
			return GroqClient(cfg.groq_api_key, model=cfg.groq_model, base_url=cfg.groq_base_url, client=client)
		if name == "openrouter":
			return OpenRouterClient(
				cfg.openrouter_api_key,
				model=cfg.openrouter_model,
				base_url=cfg.openrouter_base_url,
				referer=cfg.openrouter_referer,
				title=cfg.openrouter_title,
				client=client,
			)
	except ValueError as err:
		logger.warning("Provider %s disabled: %s", name, err)
		return None
	raise ValueError(f"Unknown provider {name!r}; expected one of {', '.join(PROVIDER_NAMES)}")


def build_providers(names: Sequence[str], config: Optional[Settings] = None) -> Dict[str, Optional[ProviderClient]]:
	return {name: build_provider(name, config) for name in names}


async def close_providers(providers: Dict[str, Optional[ProviderClient]]) -> None:
	seen = set()
	for client in providers.values():
		if client is None or id(client) in seen:
			continue
		seen.add(id(client))
		await client.aclose()
