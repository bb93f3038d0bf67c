from slowpipe.app import OutcomeRecorder, create_app
from slowpipe.config import ProxySettings, Settings
from slowpipe.errors import (
    ConfigError,
    PayloadError,
    PeerClosedError,
    SlowpipeError,
    WriteTimeoutError,
)
from slowpipe.proxy import create_proxy_app, render_nginx_conf
from slowpipe.response import DelayedBulkResponse, Outcome, OutcomeRecord

__version__ = "0.3.0"

__all__ = [
    "ConfigError",
    "DelayedBulkResponse",
    "Outcome",
    "OutcomeRecord",
    "OutcomeRecorder",
    "PayloadError",
    "PeerClosedError",
    "ProxySettings",
    "Settings",
    "SlowpipeError",
    "WriteTimeoutError",
    "create_app",
    "create_proxy_app",
    "render_nginx_conf",
]
