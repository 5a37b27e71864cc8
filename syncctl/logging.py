"""Logging setup for the engine and the CLI."""

import sys

from loguru import logger

from .config import AppConfig


def setup_logging(config: AppConfig, console: bool = True) -> None:
    """Configure loguru sinks for the console and the daily log file.

    Every sink is enqueued so callers never wait on log delivery.
    """
    logger.remove()

    if console and config.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
            ),
            enqueue=True,
            backtrace=True,
            diagnose=True,
        )
    elif console:
        logger.add(
            sys.stderr,
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    log_dir = config.log_path
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(log_dir / "syncctl_{time:YYYY-MM-DD}.log"),
        level="DEBUG",
        format="[{time:YYYY-MM-DD HH:mm:ss}] {level: <8} | {message}",
        rotation="00:00",
        retention=f"{config.log_retention_days} days",
        enqueue=True,
        encoding="utf-8",
    )
    logger.debug(f"Log directory: {log_dir}")
