"""
Logging configuration

Console always; daily app and error files outside the test environment.
Messages carry their own context (shop, metric key) inline.
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from shop_analytics.config import Settings, get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger(config: Optional[Settings] = None):
    """(Re)configure the global loguru logger from settings"""
    config = config or get_settings()
    logger.remove()

    logger.add(sys.stdout, colorize=True, format=CONSOLE_FORMAT, level=config.log_level)

    if config.environment == "test":
        return logger

    log_dir = Path(config.log_dir)
    logger.add(
        log_dir / "shop_analytics_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO"
    )
    # Background refresh failures land here too
    logger.add(
        log_dir / "errors_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="90 days",
        level="ERROR"
    )

    return logger


log = setup_logger()
