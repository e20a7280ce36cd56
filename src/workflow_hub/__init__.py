"""Workflow Hub.

Multi-step business workflows run against contacts:
- step collections edited through batched actions and explicit reorders
- execution records with a lifecycle state machine
- analytics over execution history
"""

__version__ = "0.1.0"

from workflow_hub.config import ServiceSettings

__all__ = ["__version__", "ServiceSettings"]
