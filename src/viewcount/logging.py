import logging

import structlog

# Settings record log levels mapped to stdlib levels; "off" silences the package logger
LOG_LEVELS: dict[str, int] = {
    "off": logging.CRITICAL + 10,
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def to_log_level(name: str) -> int:
    """Map a settings log level name to a stdlib level, defaulting to off."""
    return LOG_LEVELS.get(name.lower(), LOG_LEVELS["off"])


def setup_logging(debug: bool, level: str = "info") -> None:
    log_level = logging.DEBUG if debug else to_log_level(level)

    # Configure standard library logging
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
    )
    logging.getLogger("viewcount").setLevel(log_level)

    # Base processors for all environments
    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        # Colored console output for development
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_log_level(level: str) -> None:
    """Change the package log level at runtime, e.g. after a settings update."""
    logging.getLogger("viewcount").setLevel(to_log_level(level))
