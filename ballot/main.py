"""FastAPI main application for the ballot service."""

from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from ballot.api.routes import election
from ballot.core.config import settings
from ballot.core.logging_config import get_logger, setup_logging
from ballot.core.responses import error_response_dict, success_response
from ballot.services.engine import ElectionEngine
from ballot.services.errors import (
    AlreadyRegisteredError,
    AlreadyVotedError,
    AuthorizationError,
    ElectionError,
    InvalidCandidateError,
    PhaseError,
)
from ballot.services.events import InMemoryEventLog, LoggingEventSink
from ballot.services.persistence import SnapshotStore, load_or_create_engine

setup_logging()
logger = get_logger(__name__)

ERROR_STATUS = {
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    PhaseError: status.HTTP_409_CONFLICT,
    AlreadyRegisteredError: status.HTTP_409_CONFLICT,
    AlreadyVotedError: status.HTTP_409_CONFLICT,
}


def election_error_status(exc: ElectionError, method: str) -> int:
    """HTTP status for an engine error; bad arguments default to 400."""
    if isinstance(exc, InvalidCandidateError) and method == "GET":
        return status.HTTP_404_NOT_FOUND
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def build_engine() -> ElectionEngine:
    """Create the engine from settings, restoring a snapshot when configured."""
    if settings.SNAPSHOT_PATH:
        return load_or_create_engine(
            SnapshotStore(settings.SNAPSHOT_PATH),
            settings.ADMIN_IDENTITY,
            settings.DELEGATION_MODE,
        )
    return ElectionEngine(
        settings.ADMIN_IDENTITY, delegation_mode=settings.DELEGATION_MODE
    )


def attach_engine(app: FastAPI, engine: ElectionEngine) -> None:
    event_log = InMemoryEventLog()
    engine.subscribe(event_log)
    engine.subscribe(LoggingEventSink())
    app.state.engine = engine
    app.state.event_log = event_log


def create_app(engine: ElectionEngine | None = None) -> FastAPI:
    """
    Build the application.

    Passing an engine skips building one from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - runs on startup and shutdown."""
        logger.info("Starting ballot service...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        if getattr(app.state, "engine", None) is None:
            attach_engine(app, build_engine())
        logger.info(
            f"Delegation mode: {app.state.engine.delegation_mode.value}, "
            f"phase: {app.state.engine.phase.value}"
        )

        yield

        logger.info("Shutting down ballot service...")
        app.state.engine.close()

    app = FastAPI(
        title="Ballot Service",
        description="""
        **Ballot Service** - single-administrator elections with delegated voting

        ## Authentication

        Mutating endpoints require a bearer JWT whose `sub` claim is the
        caller's identity:

        ```
        Authorization: Bearer <your_jwt_token>
        ```

        ## Phases

        - **setup**: the administrator registers candidates and voters
        - **voting**: registered voters vote or delegate, once each
        - **closed**: the winner can be read
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if engine is not None:
        attach_engine(app, engine)

    if settings.ENVIRONMENT == "development":
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
        )

    @app.exception_handler(ElectionError)
    async def election_exception_handler(request: Request, exc: ElectionError):
        """Render rejected election operations, keeping the error class visible."""
        errors = {"code": exc.code}
        if isinstance(exc, PhaseError) and exc.phase is not None:
            errors["phase"] = exc.phase.value
        return error_response_dict(
            {"success": False, "message": exc.message, "data": None, "errors": errors},
            election_error_status(exc, request.method),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with standardized error responses."""
        if isinstance(exc.detail, dict):
            return error_response_dict(exc.detail, exc.status_code)
        return error_response_dict(
            {"success": False, "message": exc.detail, "data": None, "errors": None},
            exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """Handle Pydantic validation errors."""
        errors = {}
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors[field] = error["msg"]

        return error_response_dict(
            {
                "success": False,
                "message": "Validation failed",
                "data": None,
                "errors": errors,
            },
            422,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        return error_response_dict(
            {
                "success": False,
                "message": "An unexpected error occurred",
                "data": None,
                "errors": None,
            },
            500,
        )

    v1_router = APIRouter(prefix="/v1")
    v1_router.include_router(election.router)
    app.include_router(v1_router)

    # Unversioned routes track the latest version
    app.include_router(election.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for monitoring and load balancers."""
        engine = getattr(request.app.state, "engine", None)
        return success_response(
            data={
                "status": "healthy",
                "phase": engine.phase.value if engine is not None else None,
            }
        )

    return app


app = create_app()
