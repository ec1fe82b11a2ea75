from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# OpenAI (chat completions)
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
	openai_base_url: str = Field(default="https://api.openai.com/v1/chat/completions", validation_alias="OPENAI_BASE_URL")

	# Anthropic (messages API)
	anthropic_api_key: str | None = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
	anthropic_model: str = Field(default="claude-sonnet-4-5-20250929", validation_alias="ANTHROPIC_MODEL")
	anthropic_base_url: str = Field(default="https://api.anthropic.com/v1/messages", validation_alias="ANTHROPIC_BASE_URL")
	anthropic_version: str = Field(default="2023-06-01", validation_alias="ANTHROPIC_VERSION")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# Groq (OpenAI-compatible), default secondary for the analysis call
	groq_api_key: str | None = Field(default=None, validation_alias="GROQ_API_KEY")
	groq_model: str = Field(default="openai/gpt-oss-120b", validation_alias="GROQ_MODEL")
	groq_base_url: str = Field(default="https://api.groq.com/openai/v1/chat/completions", validation_alias="GROQ_BASE_URL")

	# OpenRouter configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Humanness Analysis", validation_alias="OPENROUTER_TITLE")

	# Comma separated provider names, e.g. "openai,gemini,anthropic"
	baseline_providers: str = Field(default="openai,gemini,anthropic", validation_alias="BASELINE_PROVIDERS")
	baseline_timeout_seconds: float = Field(default=45.0, validation_alias="BASELINE_TIMEOUT_SECONDS")
	baseline_max_tokens: int = Field(default=2000, validation_alias="BASELINE_MAX_TOKENS")
	baseline_temperature: float = Field(default=0.7, validation_alias="BASELINE_TEMPERATURE")

	analysis_primary: str = Field(default="anthropic", validation_alias="ANALYSIS_PRIMARY")
	analysis_secondary: str | None = Field(default="groq", validation_alias="ANALYSIS_SECONDARY")
	analysis_timeout_seconds: float = Field(default=90.0, validation_alias="ANALYSIS_TIMEOUT_SECONDS")
	analysis_max_tokens: int = Field(default=4000, validation_alias="ANALYSIS_MAX_TOKENS")
	analysis_temperature: float = Field(default=0.4, validation_alias="ANALYSIS_TEMPERATURE")

	# Step ingestion batching
	step_batch_size: int = Field(default=3, validation_alias="STEP_BATCH_SIZE")
	step_flush_delay_seconds: float = Field(default=1.0, validation_alias="STEP_FLUSH_DELAY_SECONDS")
	steps_total: int = Field(default=16, validation_alias="STEPS_TOTAL")
	game_id: str = Field(default="humanity-simulation", validation_alias="GAME_ID")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def baseline_provider_names(self) -> List[str]:
		return [name.strip().lower() for name in self.baseline_providers.split(",") if name.strip()]

	@property
	def analysis_chain_names(self) -> List[str]:
		names = [self.analysis_primary.strip().lower()]
		secondary = (self.analysis_secondary or "").strip().lower()
		if secondary and secondary not in names:
			names.append(secondary)
		return names

settings = Settings()
