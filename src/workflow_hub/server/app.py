"""FastAPI app factory.

Endpoints are thin wrappers over :class:`~workflow_hub.services.WorkflowService`.
Domain errors are turned into JSON responses here and nowhere else.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_hub import __version__
from workflow_hub.config import ServiceSettings
from workflow_hub.errors import (
    NotFound,
    StateConflict,
    ValidationError,
    WorkflowHubError,
)
from workflow_hub.server.router import router
from workflow_hub.services.uploads import UploadUrlIssuer
from workflow_hub.services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)


def status_for(error: WorkflowHubError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, (ValidationError, StateConflict)):
        return 400
    return 500


def create_app(
    settings: ServiceSettings | None = None,
    *,
    service: WorkflowService | None = None,
    upload_issuer: UploadUrlIssuer | None = None,
) -> FastAPI:
    settings = settings or ServiceSettings()

    app = FastAPI(
        title="Workflow Hub",
        version=__version__,
        description="REST API for multi-step workflows, their executions and analytics.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.workflow_service = service or WorkflowService.from_settings(
        settings, upload_issuer=upload_issuer
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowHubError)
    def handle_domain_error(request: Request, exc: WorkflowHubError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(
                "Request failed",
                extra={"path": request.url.path, "code": exc.code, "details": exc.details},
            )
        return JSONResponse(status_code=status, content=exc.to_json())

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        items = [
            {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        first = f"{items[0]['loc']}: {items[0]['msg']}" if items else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"detail": first, "code": "ValidationError", "details": {"errors": items}},
        )

    app.include_router(router, prefix="/api")
    return app
