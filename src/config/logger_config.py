import sys
from pathlib import Path

from loguru import logger

from src.config.config import config


def configure_logger(
    env: str = "development",
    console_level: str = None,
    file_level: str = "DEBUG",
    error_file_level: str = "ERROR",
    log_dir: str = None,
) -> None:
    """
    Configure the Loguru logger for the payment-links service.

    Console output is always enabled. When `log_dir` is given, two rotating
    file sinks are added: `app.log` for everything at `file_level` and above,
    and `error.log` for errors only.

    Args:
        env: Environment ("development" or "production") to set default log levels.
        console_level: Log level for console output (overrides env-based default).
        file_level: Log level for the general log file.
        error_file_level: Log level for the error-specific log file.
        log_dir: Directory for file sinks; file logging is disabled when empty.
    """
    logger.remove()

    log_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | "
        "{module}:{function}:{line} - {message} | {extra}"
    )

    default_console_level = "DEBUG" if env.lower() == "development" else "INFO"
    console_level = console_level or default_console_level

    logger.add(
        sys.stderr,
        format=log_format,
        level=console_level.upper(),
        backtrace=True,
        diagnose=env.lower() == "development",
        colorize=True,
    )

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)

        logger.add(
            directory / "app.log",
            format=log_format,
            level=file_level.upper(),
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

        # Gateway and reconciliation failures end up here for operators
        logger.add(
            directory / "error.log",
            format=log_format,
            level=error_file_level.upper(),
            rotation="5 MB",
            retention="30 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(
        "Logger configured",
        env=env,
        console_level=console_level,
        file_level=file_level,
        log_dir=log_dir,
    )


configure_logger(
    env=config.ENV,
    console_level=config.CONSOLE_LOG_LEVEL,
    file_level=config.FILE_LOG_LEVEL,
    error_file_level=config.ERROR_LOG_LEVEL,
    log_dir=config.LOG_DIR,
)

log = logger
