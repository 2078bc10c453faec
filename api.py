"""
api.py - HTTP entry points for triggering ingestion runs.

    POST /scrape-all-sources   aggregate run (admin or service token)
    POST /scrape/{source}      one source (also accepts the internal-call marker)
    GET  /runs/latest          last run row per source tag (admin or service token)
    GET  /health
"""

from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError

from auth import AuthorizationGate
from config import RUN_TIMEOUT_SECONDS
from database import Database
from errors import AuthorizationError, OrchestratorFatalError, UnknownSourceError
from monitoring import get_logger
from notifier import MatchNotifier
from orchestrator import Orchestrator
from scorer import StoredScoreCollaborator
from scrapers.registry import build_default_registry

logger = get_logger("api")


class ScrapeRequest(BaseModel):
    manual_trigger: bool = False
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


# --- Error handlers ---

async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def unknown_source_handler(request: Request, exc: UnknownSourceError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})


async def fatal_error_handler(request: Request, exc: OrchestratorFatalError) -> JSONResponse:
    logger.error(f"Fatal run error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# --- Dependencies ---

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_gate(request: Request) -> AuthorizationGate:
    return request.app.state.gate


async def optional_body(request: Request) -> ScrapeRequest:
    """Scheduler calls may POST with no body at all."""
    raw = await request.body()
    if not raw.strip():
        return ScrapeRequest()
    try:
        return ScrapeRequest.model_validate_json(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e


def build_orchestrator(db: Database) -> Orchestrator:
    notifier = MatchNotifier(db, StoredScoreCollaborator(db))
    return Orchestrator(db, build_default_registry(), notifier=notifier)


def create_app(
    db: Optional[Database] = None,
    orchestrator: Optional[Orchestrator] = None,
    gate: Optional[AuthorizationGate] = None,
) -> FastAPI:
    """Application factory. Collaborators default to the configured ones."""
    db = db or Database()
    db.init_db()

    app = FastAPI(title="Opportunity Ingest", version="1.0.0")
    app.state.db = db
    app.state.orchestrator = orchestrator or build_orchestrator(db)
    app.state.gate = gate or AuthorizationGate(db)

    app.add_exception_handler(AuthorizationError, authorization_error_handler)
    app.add_exception_handler(UnknownSourceError, unknown_source_handler)
    app.add_exception_handler(OrchestratorFatalError, fatal_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/scrape-all-sources")
    def scrape_all_sources(
        body: ScrapeRequest = Depends(optional_body),
        authorization: Optional[str] = Header(default=None),
        orchestrator: Orchestrator = Depends(get_orchestrator),
        gate: AuthorizationGate = Depends(get_gate),
    ):
        identity = gate.authorize(authorization)
        timeout = body.timeout_seconds if body.timeout_seconds is not None else RUN_TIMEOUT_SECONDS
        summary = orchestrator.run_all(identity, timeout_seconds=timeout, manual_trigger=body.manual_trigger)
        return summary.to_dict()

    @app.post("/scrape/{source}")
    def scrape_source(
        source: str,
        authorization: Optional[str] = Header(default=None),
        x_internal_call: Optional[str] = Header(default=None),
        orchestrator: Orchestrator = Depends(get_orchestrator),
        gate: AuthorizationGate = Depends(get_gate),
    ):
        identity = gate.authorize(authorization, internal_marker=x_internal_call, allow_internal=True)
        return orchestrator.run_source(source, identity).to_dict()

    @app.get("/runs/latest")
    def latest_runs(
        authorization: Optional[str] = Header(default=None),
        db: Database = Depends(get_db),
        gate: AuthorizationGate = Depends(get_gate),
    ):
        gate.authorize(authorization)
        return {
            "runs": [
                {
                    "id": run.id,
                    "source": run.source,
                    "status": run.status.value,
                    "started_at": run.started_at,
                    "completed_at": run.completed_at,
                    "opportunities_found": run.opportunities_found,
                    "opportunities_inserted": run.opportunities_inserted,
                    "opportunities_updated": run.opportunities_updated,
                    "error_message": run.error_message,
                }
                for run in db.get_latest_runs()
            ]
        }

    return app
