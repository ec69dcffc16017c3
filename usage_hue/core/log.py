import logging
from logging.handlers import RotatingFileHandler

from .config import Settings


def configure_logging(settings: Settings) -> None:
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s - %(message)s"
    )

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    # Rotating file next to the config, the daemon runs unattended for days
    settings.config_dir.mkdir(parents=True, exist_ok=True)
    fh = RotatingFileHandler(
        settings.log_path, maxBytes=1_000_000, backupCount=3
    )
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    # Silence noisy request logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
