"""Logging setup shared by the agent modules and the HTTP service."""
import logging
import os
from typing import Optional

from dotenv import load_dotenv

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(message)s"

# Between WARNING and ERROR so security events survive a WARNING filter.
SECURITY = 35
logging.addLevelName(SECURITY, "SECURITY")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, honouring LOG_LEVEL."""
    load_dotenv()
    if logging.getLogger().handlers:
        return

    log_level = (level or os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    logging.basicConfig(level=log_level, format=os.getenv("LOG_FORMAT", DEFAULT_FORMAT))


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"recruiter_agent.{component}")


def log_security(logger: logging.Logger, message: str, *args) -> None:
    if logger.isEnabledFor(SECURITY):
        logger.log(SECURITY, message, *args)
