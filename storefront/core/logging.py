import logging

import structlog

from storefront.core.config import settings

# Chatty third-party loggers kept at WARNING unless DEBUG is on
NOISY_LOGGERS = ("urllib3", "razorpay", "sqlalchemy.engine", "celery.app.trace")


def _add_service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", "storefront")
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging():
    """Event-style structured logs; JSON everywhere except local DEBUG runs."""
    level = logging.DEBUG if settings.DEBUG else logging.INFO
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.DEBUG else logging.WARNING)
