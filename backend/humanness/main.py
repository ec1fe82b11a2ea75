import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .analysis import ComparativeAnalyzer
from .baselines import BaselineOrchestrator
from .coalescer import StepCoalescer
from .db import Base, engine, ensure_schema
from .errors import HumannessError
from .llm_client import build_provider, close_providers
from .settings import settings
from .store import SqlSessionStore
from .routers import health, humanness

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(target: FastAPI):
	init_storage()
	configure_pipeline(target)
	yield
	coalescer = getattr(target.state, "coalescer", None)
	if coalescer is not None:
		drained = await coalescer.drain()
		if drained:
			logger.info("Flushed %d pending step(s) on shutdown", drained)
	await close_providers(getattr(target.state, "providers", {}))


app = FastAPI(title="Humanness Analysis API", lifespan=_lifespan)
app.include_router(health.router)
app.include_router(humanness.router)


@app.exception_handler(HumannessError)
async def humanness_error_handler(request: Request, exc: HumannessError):
	return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	return JSONResponse(
		status_code=400,
		content={
			"success": False,
			"error": "Invalid input",
			"code": "invalid_input",
			"retryable": False,
			"details": jsonable_encoder(exc.errors()),
		},
	)


@app.get("/info")
def root():
	providers = getattr(app.state, "providers", {})
	return {
		"status": "ok",
		"providers": {name: client is not None for name, client in providers.items()},
		"baseline_providers": settings.baseline_provider_names,
		"analysis_chain": settings.analysis_chain_names,
	}


def configure_pipeline(target: FastAPI) -> None:
	"""Attach store, coalescer, providers, orchestrator and analyzer to ``target.state``."""
	providers = {}
	for name in settings.baseline_provider_names + settings.analysis_chain_names:
		if name not in providers:
			providers[name] = build_provider(name)
	store = SqlSessionStore()
	target.state.providers = providers
	target.state.store = store
	target.state.coalescer = StepCoalescer(
		store,
		batch_size=settings.step_batch_size,
		flush_delay=settings.step_flush_delay_seconds,
		steps_total=settings.steps_total,
	)
	target.state.orchestrator = BaselineOrchestrator(
		{name: providers[name] for name in settings.baseline_provider_names},
		timeout=settings.baseline_timeout_seconds,
		max_tokens=settings.baseline_max_tokens,
		temperature=settings.baseline_temperature,
	)
	target.state.analyzer = ComparativeAnalyzer(
		[(name, providers[name]) for name in settings.analysis_chain_names],
		timeout=settings.analysis_timeout_seconds,
		max_tokens=settings.analysis_max_tokens,
		temperature=settings.analysis_temperature,
	)
	configured = [name for name, client in providers.items() if client is not None]
	logger.info("Providers configured: %s", ", ".join(configured) or "none")


def init_storage() -> None:
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception as err:
		logger.warning("Schema check skipped: %s", err)


if __name__ == "__main__":
	import uvicorn
	uvicorn.run("humanness.main:app", host="0.0.0.0", port=8000)
