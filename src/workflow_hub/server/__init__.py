"""HTTP adapter for workflow-hub."""

from __future__ import annotations

from workflow_hub.server.app import create_app

__all__ = ["create_app"]
