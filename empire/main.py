"""
Process entry point for listener mode.

Usage:
    empire-server
    SERVER_ENVIRONMENT=development empire-server --port 5050
"""

import argparse
import sys
from typing import List, Optional

from loguru import logger

from empire.api.adapter import AdapterMode, RequestAdapter
from empire.api.config import Settings
from empire.api.errors import UnrecoverableStartupFailure
from empire.api.logging_config import configure_logging
from empire.utils import LoggerConfig


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the Findawise Empire server")
    parser.add_argument("--host", type=str, default=None, help="Bind address (default: SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: SERVER_PORT or 5000)")
    args = parser.parse_args(argv)

    settings = Settings()
    server = settings.server
    LoggerConfig.setup(log_dir=server.log_dir, level=server.log_level)
    configure_logging(server.log_level, json_output=not server.is_development)

    adapter = RequestAdapter(settings=settings, mode=AdapterMode.LISTENER)
    try:
        adapter.listen(host=args.host, port=args.port)
    except UnrecoverableStartupFailure as e:
        logger.critical(f"Startup failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
