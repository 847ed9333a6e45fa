"""
Pydantic response models for the always-available endpoints.

Field examples populate OpenAPI docs at /docs.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    """GET /api/status."""

    success: bool = True
    status: str = Field(default="healthy", examples=["healthy"])
    timestamp: str
    mode: str = Field(..., examples=["normal", "emergency-startup", "fallback"])
    server: str = "running"


class HealthResponse(BaseModel):
    """GET /api/health: liveness plus uptime."""

    success: bool = True
    status: str = "healthy"
    timestamp: str
    uptime: float = Field(..., description="Seconds since the server state was created")
    mode: str
    degraded: bool = False


class ErrorResponse(BaseModel):
    """Adapter-level failure (500)."""

    error: str
    status: str = "error"
    timestamp: str
    message: str
    stack: Optional[str] = None


class FallbackResponse(BaseModel):
    """Served when the pipeline cannot be constructed at all."""

    message: str = "Findawise Empire API"
    status: str = "operational"
    timestamp: str
    environment: str
    version: str


class DependencyStatusModel(BaseModel):
    name: str
    reachable: bool
    last_checked_at: datetime
    latency_ms: float = 0.0
    error: Optional[str] = None


class RouteEntryModel(BaseModel):
    path: str
    methods: List[str] = []
    name: str = ""


class RouteTableResponse(BaseModel):
    source: str
    routes: List[RouteEntryModel] = []


class CapabilityModel(BaseModel):
    name: str
    ok: bool
    error: Optional[str] = None
