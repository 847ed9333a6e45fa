"""
Route registration with an all-or-nothing guarantee.

Business groups are installed onto a private staging router in priority
order. The staging router is attached to the app only after every group
succeeded, so a failure halfway never leaves a partial table behind: the
caller installs the fixed fallback table instead.
"""

import importlib
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Sequence, Tuple

from fastapi import APIRouter, FastAPI
from loguru import logger

from empire.api.errors import RouteRegistrationFailure
from empire.api.routes.health import router as health_router

FULL = "full"
FALLBACK = "fallback"


@dataclass(frozen=True)
class RouteEntry:
    path: str
    methods: Tuple[str, ...] = ()
    name: str = ""


@dataclass
class RouteTable:
    """Ordered snapshot of what was installed. Read-only once built."""

    source: str
    entries: List[RouteEntry] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [e.path for e in self.entries]


@dataclass(frozen=True)
class RouteGroup:
    """A named set of handlers. install() receives the staging router; it may be async."""

    name: str
    install: Callable[[APIRouter], Any]
    priority: int = 100

    @classmethod
    def from_module(cls, module_path: str, priority: int = 100) -> "RouteGroup":
        """Group whose handlers live on `router` in a lazily imported module."""

        def install(router: APIRouter) -> None:
            module = importlib.import_module(module_path)
            router.include_router(module.router)

        return cls(name=module_path, install=install, priority=priority)


def _entries(routes: Iterable[Any]) -> List[RouteEntry]:
    entries = []
    for route in routes:
        methods = getattr(route, "methods", None) or ()
        entries.append(
            RouteEntry(
                path=getattr(route, "path", ""),
                methods=tuple(sorted(methods)),
                name=getattr(route, "name", "") or "",
            )
        )
    return entries


class RouteRegistrar:
    """Installs business route groups, or the fallback table when that fails."""

    def __init__(self, groups: Sequence[RouteGroup] = ()):
        # sorted() is stable: equal priorities keep declaration order
        self.groups = sorted(groups, key=lambda g: g.priority)

    async def register_all(self, app: FastAPI) -> RouteTable:
        """Attach every group or none. Raises RouteRegistrationFailure."""
        staging = APIRouter()
        for group in self.groups:
            try:
                result = group.install(staging)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                raise RouteRegistrationFailure(group.name, e) from e
            logger.debug(f"Route group '{group.name}' staged")

        app.include_router(staging)
        app.include_router(health_router)
        table = RouteTable(source=FULL, entries=_entries(staging.routes) + _entries(health_router.routes))
        logger.info(f"Registered {len(self.groups)} route group(s), {len(table.entries)} route(s)")
        return table

    def install_fallback(self, app: FastAPI) -> RouteTable:
        """Attach only the dependency-free health endpoints."""
        app.include_router(health_router)
        table = RouteTable(source=FALLBACK, entries=_entries(health_router.routes))
        logger.warning(f"Fallback route table installed: {', '.join(table.paths)}")
        return table

    @classmethod
    def from_modules(cls, modules: Sequence[str]) -> "RouteRegistrar":
        return cls([RouteGroup.from_module(path, priority=i) for i, path in enumerate(modules)])
