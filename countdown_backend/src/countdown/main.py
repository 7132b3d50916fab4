import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .engine import CountdownEngine
from .routers import countdowns as countdowns_router
from .settings import get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "countdowns",
        "description": "Countdown lifecycle, live-update control, statistics and change events.",
    },
]


def configure_logging(level: str) -> None:
    """Install a root handler once; later calls only adjust the level."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


_settings = get_settings()
configure_logging(_settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the engine from current settings, start its tick loop, and shut it
    down when the application stops.
    """
    settings = get_settings()
    engine = CountdownEngine.from_settings(settings)
    app.state.settings = settings
    app.state.engine = engine
    engine.startup()
    try:
        yield
    finally:
        await engine.shutdown()


app = FastAPI(
    title="Countdown Backend",
    description="Countdown timers with live remaining-time breakdowns and pluggable storage backends.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validation_response(detail) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": detail,
        },
    )


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return _validation_response(jsonable_encoder(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Same envelope for validation failures raised while applying an edit."""
    return _validation_response(exc.errors(include_url=False, include_context=False))


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health, storage backend and whether
        the tick loop is running.
    """
    engine: CountdownEngine = request.app.state.engine
    return {
        "message": "Healthy",
        "backend": request.app.state.settings.persistence_backend,
        "running": engine.running,
    }


# Include routers
app.include_router(countdowns_router.router)
