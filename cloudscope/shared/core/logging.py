import logging
import sys
from typing import Any

import structlog

from cloudscope.shared.core.config import get_settings

SENSITIVE_FIELDS = frozenset({
    "password", "token", "secret", "api_key", "admin_key", "x_admin_key",
    "aws_secret_access_key", "secret_access_key", "client_secret",
    "service_account_json", "upstash_redis_token",
})
REDACTED = "[REDACTED]"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_FIELDS else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def secret_redactor(logger, method_name, event_dict):
    """
    Masks credential fields at any depth of the event.
    Scan requests carry cloud secrets in their bodies; none may reach a log sink.
    """
    return _redact(event_dict)


def setup_logging():
    settings = get_settings()
    min_level = logging.DEBUG if settings.DEBUG else logging.INFO

    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            secret_redactor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn, apscheduler and the cloud SDKs log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=min_level)
    for noisy in ("botocore", "azure.core.pipeline.policies.http_logging_policy", "google.auth"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
