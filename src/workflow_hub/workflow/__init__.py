"""Workflow domain concepts.

This package holds first-class types for:
- workflow and step documents, with step configuration as a tagged union
- batched step mutations and explicit reordering
- execution records and their lifecycle state machine
"""

__all__: list[str] = []
