"""
Story-to-video generation pipeline package.

This package contains the core components that drive a project through
its stages:
- Status ledger and artifact store for scenes
- Single-scene generator and batch orchestrator
- Reconciliation of long-running video tasks
- Error handling shared by every layer
"""

__version__ = "0.1.0"

from .error_handler import PipelineError, ErrorCode, should_retry

__all__ = [
    "PipelineError",
    "ErrorCode",
    "should_retry",
]
