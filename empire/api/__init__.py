"""
Adaptive bootstrap and request adapter for the Findawise Empire server.

Provides:
- BootstrapOrchestrator / build_pipeline: cold start to a ready pipeline
- RequestAdapter: ASGI entry point for listener and serverless deployments
- Settings: Configuration via environment variables
"""

from empire.api.adapter import AdapterMode, RequestAdapter, create_serverless_app
from empire.api.bootstrap import BootstrapOrchestrator, Pipeline, build_pipeline
from empire.api.config import Settings
from empire.api.state import ServerPhase, ServerState

__all__ = [
    "AdapterMode",
    "BootstrapOrchestrator",
    "Pipeline",
    "RequestAdapter",
    "ServerPhase",
    "ServerState",
    "Settings",
    "build_pipeline",
    "create_serverless_app",
]
