"""
Serverless entrypoint.

Exports the request adapter as `app`; the platform invokes it once per
request and the pipeline is built on the first (cold) invocation.
"""

from pathlib import Path
import sys

project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from empire.api.adapter import create_serverless_app
from empire.api.config import Settings
from empire.api.logging_config import configure_logging
from empire.utils import LoggerConfig

settings = Settings()
LoggerConfig.setup(level=settings.server.log_level)
configure_logging(settings.server.log_level)

app = create_serverless_app(settings)
