import logging

import structlog

# third-party loggers that are chatty at INFO/DEBUG
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "uvicorn.access")


def setup_logging(level: "str", log_format: "str" = "console") -> "None":
    """
    maps string log level to logging module levels and configures
    structlog with timestamping. "console" renders for humans, "json"
    emits one JSON object per line for log shippers.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: "list[structlog.types.Processor]" = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
