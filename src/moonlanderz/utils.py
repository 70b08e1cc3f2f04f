import sys

from loguru import logger


def init_logger(log_dir: str = "logs") -> None:
    logger.remove()

    logger.add(
        log_dir + "/{time:MM_D}/{time:HH_mm}.log",
        format="{time:HH:mm:ss} | {function}:{line} | {level} - {message}",
    )
    logger.add(
        sys.stdout,
        format="<level>{time:HH:mm:ss}</level> | <lk>{function}</lk>:<lk>{line}</lk> | <level>{level}</level> - 🌕 <magenta>{message}</magenta>",
        colorize=True,
    )


def load_private_keys(path: str = "accounts.txt") -> list:
    with open(path, "r") as f:
        return [line.strip() for line in f.read().splitlines() if line.strip()]
