"""
FastAPI application — trigger and status API for the news snapshotter.

Endpoints (all require ``Authorization: Bearer <ASSISTANT_API_KEY>`` except /health):
  POST   /                    — Start a snapshot run (optional body {"sites": [...]})
  GET    /?workflowId=<id>    — Get run status (and summary once complete)
  DELETE /?workflowId=<id>    — Request cancellation of a run
  GET    /runs                — List runs
  GET    /health              — Health check
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Union

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from temporalio.client import Client

import config
from features.durable import InMemoryStepStore, PostgresStepStore, RunNotFoundError
from workflows.controller import RunController, TemporalRunController

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


class AuthError(Exception):
    """Missing or wrong bearer token."""


class BindingError(Exception):
    """No run controller is configured for this process."""


def _build_store():
    """Postgres when DATABASE_URL works, otherwise in-memory."""
    if config.DATABASE_URL:
        try:
            store = PostgresStepStore().init()
            log.info("Postgres step store initialized")
            return store
        except Exception as e:
            log.warning("Could not connect to Postgres: %s (runs will be in-memory only)", e)
    return InMemoryStepStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = config.SnapshotSettings.from_env()
    if getattr(app.state, "controller", None) is None:
        try:
            temporal_client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
            app.state.controller = TemporalRunController(temporal_client, settings)
            app.state.backend = "temporal"
            log.info("Connected to Temporal at %s", config.TEMPORAL_HOST)
        except Exception as e:
            log.warning("Could not connect to Temporal: %s (runs will execute in-process)", e)
            app.state.controller = RunController(settings, _build_store())
            app.state.backend = "in-process"
        if settings.api_url and settings.api_key:
            await app.state.controller.recover()
    yield


app = FastAPI(
    title="News Snapshotter",
    description="Batched full-page screenshots of news sites with durable, resumable runs",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.controller = None
app.state.backend = None


class LegacyRequestBody(BaseModel):
    addStyleTag: str | None = None


class SiteSpec(BaseModel):
    url: str
    styleOverride: str | None = None
    requestBody: LegacyRequestBody | None = None


class TriggerRequest(BaseModel):
    sites: list[Union[str, SiteSpec]] | None = Field(default=None)


# ── Errors ────────────────────────────────────────────────────────────

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


@app.exception_handler(AuthError)
async def _auth_error(request: Request, exc: AuthError):
    return _error(401, str(exc))


@app.exception_handler(BindingError)
async def _binding_error(request: Request, exc: BindingError):
    return _error(404, str(exc))


@app.exception_handler(RunNotFoundError)
async def _not_found(request: Request, exc: RunNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(config.ConfigurationError)
async def _configuration_error(request: Request, exc: config.ConfigurationError):
    return _error(400, str(exc))


@app.exception_handler(ValueError)
async def _bad_value(request: Request, exc: ValueError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
async def _invalid_request(request: Request, exc: RequestValidationError):
    return _error(400, f"Invalid request: {exc.errors()}")


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    log.error("Request failed: %s", exc, exc_info=True)
    return _error(400, str(exc) or "Unknown error")


def require_bearer(authorization: str | None = Header(default=None)) -> None:
    """Route dependency; resolved before the body and query are validated."""
    expected = f"Bearer {config.ASSISTANT_API_KEY}"
    if not config.ASSISTANT_API_KEY or not authorization or not secrets.compare_digest(authorization, expected):
        raise AuthError("Invalid API key")


def _controller():
    controller = app.state.controller
    if controller is None:
        raise BindingError("News snapshotter workflow not found")
    return controller


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "news-snapshotter",
        "backend": app.state.backend,
    }


# ── Runs ──────────────────────────────────────────────────────────────

@app.post("/", dependencies=[Depends(require_bearer)])
async def trigger(req: TriggerRequest | None = None):
    """Start a snapshot run over the given sites (or the defaults)."""
    controller = _controller()
    sites = None
    if req is not None and req.sites is not None:
        sites = [s if isinstance(s, str) else s.model_dump(exclude_none=True) for s in req.sites]
    handle = await controller.create(sites)
    return {
        "status": "success",
        "message": "News snapshotter workflow triggered",
        "workflowId": handle.run_id,
        "workflowStatus": await controller.status(handle.run_id),
    }


@app.get("/", dependencies=[Depends(require_bearer)])
async def run_status(workflowId: str):
    """Get the status of a run; includes the summary once it is complete."""
    controller = _controller()
    return {
        "status": "success",
        "message": "News snapshotter workflow status",
        "workflowStatus": await controller.status(workflowId),
    }


@app.delete("/", dependencies=[Depends(require_bearer)])
async def cancel_run(workflowId: str):
    controller = _controller()
    return {
        "status": "success",
        "message": "News snapshotter workflow cancellation requested",
        "workflowStatus": await controller.cancel(workflowId),
    }


@app.get("/runs", dependencies=[Depends(require_bearer)])
async def list_runs(status: str | None = None, limit: int = 50):
    controller = _controller()
    return {"status": "success", "runs": await controller.list_runs(limit=limit, status=status)}
