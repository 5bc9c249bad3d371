# Core - Logging Setup
#
# Module diagnostics use stdlib logging (logging.getLogger(__name__)).
# The security event streams (pulse_security.audit, pulse_security.keychain)
# are structlog loggers routed through the same stdlib handlers.

import logging
from pathlib import Path
from typing import Optional, Union

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Safe to call more than once; handlers installed by a previous call
    are replaced.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, "_pulse_security", False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers = [logging.StreamHandler()]
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, mode='a', encoding='utf-8'))

    formatter = logging.Formatter('%(message)s')  # structlog handles formatting
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        handler._pulse_security = True
        root_logger.addHandler(handler)

    root_logger.setLevel(numeric_level)
