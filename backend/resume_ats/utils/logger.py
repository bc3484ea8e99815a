"""
Logger setup.

Services log through ``loguru.logger`` directly with a short context prefix
(``[quota]``, ``[ledger]``, ``[orchestrator]``). Entry points call
``setup_logger`` once to choose sinks and levels.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from resume_ats.config import settings

LEVEL_COLORS = {
    "WARNING": "<yellow>",
    "ERROR": "<red>",
    "CRITICAL": "<bold><red>",
}


def setup_logger(
    log_dir: Optional[Path] = None,
    level: Optional[str] = None,
    context_name: str = "resume_ats",
) -> Optional[Path]:
    """
    Configure loguru sinks.

    Console output at ``level`` (defaults to LOG_LEVEL). When ``log_dir`` is
    given (or LOG_DIR is set) a DEBUG file sink is added as well.

    Args:
        log_dir: Directory for the log file
        level: Console level override
        context_name: Log file stem

    Returns:
        Path to the log file, or None when logging to console only
    """
    logger.remove()

    for level_name, color in LEVEL_COLORS.items():
        logger.level(level_name, color=color)

    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} | <level>{level: <7}</level> | <level>{message}</level>",
        level=(level or settings.log_level).upper(),
        colorize=True,
    )

    if log_dir is None and settings.log_dir:
        log_dir = Path(settings.log_dir)
    if log_dir is None:
        return None

    log_dir = Path(log_dir)
    log_dir.mkdir(exist_ok=True, parents=True)
    log_file = log_dir / f"{context_name}.log"
    logger.add(
        log_file, format="{time:YYYY-MM-DD HH:mm:ss} | {level: <7} | {message}", level="DEBUG"
    )
    log_provenance()
    return log_file


def log_provenance() -> None:
    """Log script, command and interpreter details at the top of a session."""
    logger.info("=" * 80)
    logger.info(f"Script: {sys.argv[0]}")
    logger.info(f"Command: {' '.join(sys.argv)}")
    logger.info(f"Working directory: {Path.cwd()}")
    logger.info(f"Python: {sys.version.split()[0]}")
    logger.info(f"Weekly analysis limit: {settings.weekly_analysis_limit}")
    logger.info("=" * 80)
