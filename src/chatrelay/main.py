import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import make_asgi_app

from chatrelay.api.chat import router as chat_router
from chatrelay.api.enhancer import router as enhancer_router
from chatrelay.api.health import router as health_router
from chatrelay.api.models import router as models_router
from chatrelay.cache import ResponseCache
from chatrelay.config import settings
from chatrelay.core.timeouts import TimeoutRegistry
from chatrelay.providers import ProviderClient

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        structlog.stdlib.NAME_TO_LEVEL.get(settings.log_level.lower(), 20)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# OpenTelemetry
# ---------------------------------------------------------------------------
resource = Resource.create({"service.name": settings.otel_service_name})
tracer_provider = TracerProvider(resource=resource)
otlp_exporter = OTLPSpanExporter(
    endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces",
)
tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
trace.set_tracer_provider(tracer_provider)

# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="chatrelay",
    version=settings.app_version,
    description=(
        "Request orchestration between a chat front end and interchangeable "
        "LLM providers: model catalog, deadlines, retries, stream normalization."
    ),
)

# CORS: restrictive defaults; override via environment in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics endpoint mounted as a sub-application
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Routers
app.include_router(health_router)
app.include_router(chat_router)
app.include_router(enhancer_router)
app.include_router(models_router)

# Instrument *after* routes are registered
FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)


# ---------------------------------------------------------------------------
# Lifecycle events
# ---------------------------------------------------------------------------
@app.on_event("startup")
async def _startup() -> None:
    # Shared request-scoped collaborators live on app.state so the
    # dependencies in chatrelay.api.dependencies can inject them.
    app.state.provider = ProviderClient(
        api_keys=settings.api_keys(),
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
        retry_base_delay=settings.llm_retry_base_delay,
    )
    app.state.timeouts = TimeoutRegistry()
    app.state.cache = (
        ResponseCache.from_url(settings.redis_url, ttl=settings.cache_ttl)
        if settings.cache_enabled
        else None
    )

    log.info(
        "chatrelay_ready",
        host=settings.host,
        port=settings.port,
        environment=settings.environment,
        configuration=app.state.provider.configuration_status(),
        llm_timeout=settings.llm_timeout,
        llm_max_retries=settings.llm_max_retries,
        cache_enabled=settings.cache_enabled,
        otel_endpoint=settings.otel_exporter_otlp_endpoint,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    log.info("chatrelay_shutting_down", pending_timers=len(app.state.timeouts))
    app.state.timeouts.cancel_all()
    if app.state.cache is not None:
        await app.state.cache.close()
    tracer_provider.shutdown()
