"""CLI entrypoint.

Runs the HTTP server or prints read-only reports straight from the local store.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError as PydanticValidationError

from workflow_hub import __version__
from workflow_hub.config import ServiceSettings
from workflow_hub.errors import WorkflowHubError
from workflow_hub.logging import configure_logging
from workflow_hub.services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-hub",
        description="Multi-step workflows, executions and analytics",
    )
    parser.add_argument("--version", action="version", version=f"workflow-hub {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    list_workflows = subparsers.add_parser("list-workflows", help="List an organization's workflows")
    list_workflows.add_argument("--org", dest="organization_id", required=True)
    list_workflows.add_argument("--status", default=None)
    list_workflows.add_argument("--search", default=None)

    analytics = subparsers.add_parser("analytics", help="Print analytics for a workflow as JSON")
    analytics.add_argument("workflow_id")
    analytics.add_argument("--org", dest="organization_id", required=True)
    analytics.add_argument("--days", type=int, default=30)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ServiceSettings()
    except PydanticValidationError as e:
        # Logging isn't configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(logging.getLevelName(settings.logging_level()))

    if args.command == "serve":
        import uvicorn

        from workflow_hub.server.app import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
        return 0

    service = WorkflowService.from_settings(settings)
    try:
        if args.command == "list-workflows":
            page = service.list_workflows(
                args.organization_id, status=args.status, search=args.search, limit=100
            )
            for item in page.items:
                print(f"{item.id}\t{item.status.value}\t{item.title}")
            return 0

        if args.command == "analytics":
            result = service.get_analytics(args.workflow_id, args.organization_id, args.days)
            print(json.dumps(result.model_dump(mode="json"), indent=2))
            return 0
    except WorkflowHubError as e:
        logger.error(e.message, extra={"code": e.code, "details": e.details})
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
