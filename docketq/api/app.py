"""FastAPI server for the DocketQ agenda digest"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docketq.agenda.dispatcher import AgendaDigestDispatcher
from docketq.agenda.repository import AgendaStore, SqliteAgendaStore
from docketq.api.middleware.auth import AgendaAuthorizer
from docketq.api.routes.agenda import router as agenda_router
from docketq.api.routes.health import router as health_router
from docketq.config import APP_VERSION, SECRET_HEADER, SERVICE_NAME, DigestConfig
from docketq.delivery.mailer import MailSender, build_mail_sender
from docketq.errors import AuthorizationError, DataStoreError, TemplateError
from docketq.observability.logging import get_logger
from docketq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

CORS_ALLOWED_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    SECRET_HEADER,
]


def loggable_errors(errors: Sequence[Any]) -> list[dict[str, Any]]:
    """Validation errors without the submitted values (secrets, addresses)."""
    return [
        {"loc": err.get("loc"), "type": err.get("type"), "msg": err.get("msg")} for err in errors
    ]


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report which fields were invalid without echoing validation internals."""
        logger.warning(
            "Validation error on %s: %s", request.url.path, loggable_errors(exc.errors())
        )
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Invalid request body",
                "invalid_fields": [str(err["loc"][-1]) for err in exc.errors() if err.get("loc")],
            },
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_exception_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"}
        )

    @app.exception_handler(TemplateError)
    async def template_exception_handler(request: Request, exc: TemplateError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(DataStoreError)
    async def data_store_exception_handler(
        request: Request, exc: DataStoreError
    ) -> JSONResponse:
        logger.error("Agenda run aborted on store failure: %s", exc)
        log_event("agenda.run.aborted", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)}
        )


def create_app(
    config: DigestConfig | None = None,
    store: AgendaStore | None = None,
    sender: MailSender | None = None,
) -> FastAPI:
    """
    Build the API with explicit dependencies.

    Configuration is validated here, so a misconfigured deployment fails at
    startup instead of on the first scheduled run.

    Raises:
        ConfigurationError: if required settings are missing or invalid
    """
    load_dotenv()
    config = (config or DigestConfig.from_env()).validate()
    store = store if store is not None else SqliteAgendaStore()
    sender = sender if sender is not None else build_mail_sender(config)

    app = FastAPI(title=SERVICE_NAME, version=APP_VERSION)
    app.state.config = config
    app.state.authorizer = AgendaAuthorizer(config)
    app.state.dispatcher = AgendaDigestDispatcher(config, store, sender)

    # Scheduler and dashboard calls come from arbitrary origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOWED_HEADERS,
    )

    _register_exception_handlers(app)
    app.include_router(agenda_router)
    app.include_router(health_router)

    if isinstance(store, SqliteAgendaStore):

        @app.on_event("startup")
        async def validate_database_schema() -> None:
            """Fail fast if the agenda tables are missing."""
            from docketq.infrastructure.database import validate_schema

            try:
                validate_schema(store.db_path)
                logger.info("Database schema validation passed")
            except (ValueError, FileNotFoundError) as e:
                logger.critical("Database schema invalid: %s", e)
                raise RuntimeError(f"Database schema validation failed: {e}") from e

    log_event(
        "api.startup",
        service="docketq",
        version=APP_VERSION,
        environment=config.environment,
        mail_provider=config.mail_provider,
    )
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "docketq.api.app:create_app",
        factory=True,
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        log_level=os.getenv("DOCKETQ_LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
