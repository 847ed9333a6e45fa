"""
Best-effort work scheduled after the server reaches a terminal phase.

Hooks run as fire-and-forget tasks. Their outcome is logged and nothing
else: a failing hook never changes the ServerState or request handling.
"""

import asyncio
from typing import Optional

import httpx
from loguru import logger

from empire.api.state import ServerState


class PostReadyHook:
    """Base class. run() returns True when the subsystem came up."""

    name = "hook"
    delay_seconds = 0.0

    async def run(self, state: ServerState) -> bool:
        raise NotImplementedError


class LocalBrainHook(PostReadyHook):
    """Check whether a local model server (Ollama API) is available for the AI brain connector."""

    name = "local-ai-brain"

    def __init__(
        self,
        url: str,
        delay_seconds: float = 2.0,
        timeout_seconds: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.delay_seconds = delay_seconds
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def run(self, state: ServerState) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            try:
                resp = await client.get(f"{self.url}/api/tags")
            except httpx.HTTPError as e:
                logger.info(f"Local AI brain not available ({e}); continuing with cloud providers only")
                return False
        if resp.status_code != 200:
            logger.info(f"Local AI brain answered {resp.status_code}; continuing with cloud providers only")
            return False
        models = resp.json().get("models", [])
        logger.info(f"Local AI brain active with {len(models)} model(s)")
        return True


async def run_hook(hook: PostReadyHook, state: ServerState) -> Optional[bool]:
    """Delay, run, log. Never raises except on cancellation."""
    if hook.delay_seconds > 0:
        await asyncio.sleep(hook.delay_seconds)
    try:
        ok = await hook.run(state)
    except Exception as e:
        logger.warning(f"Post-ready hook '{hook.name}' failed: {e}")
        return None
    logger.info(f"Post-ready hook '{hook.name}' finished (ok={ok})")
    return ok
