"""
Diagnostics route group, registered like any business group.

- GET /api/system/dependencies: latest liveness check per dependency
- GET /api/system/routes      : the installed route table
- GET /api/system/capabilities: optional subsystems and whether they installed
"""

from dataclasses import asdict
from typing import Dict, List

from fastapi import APIRouter, Request

from empire.api.schemas import (
    CapabilityModel,
    DependencyStatusModel,
    RouteEntryModel,
    RouteTableResponse,
)

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/dependencies", response_model=Dict[str, DependencyStatusModel])
async def dependencies(request: Request):
    state = request.app.state.server_state
    return {name: DependencyStatusModel(**asdict(s)) for name, s in state.dependencies.items()}


@router.get("/routes", response_model=RouteTableResponse)
async def routes(request: Request):
    table = request.app.state.server_state.route_table
    if table is None:
        return RouteTableResponse(source="none")
    return RouteTableResponse(
        source=table.source,
        routes=[
            RouteEntryModel(path=e.path, methods=list(e.methods), name=e.name)
            for e in table.entries
        ],
    )


@router.get("/capabilities", response_model=List[CapabilityModel])
async def capabilities(request: Request):
    state = request.app.state.server_state
    return [CapabilityModel(name=c.name, ok=c.ok, error=c.error) for c in state.capabilities]
