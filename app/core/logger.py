"""Process-wide logging configuration."""
import logging
import sys

from app.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once. Later calls only adjust the level."""
    global _configured
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)

    # uvicorn installs its own handlers; keep its access log from doubling ours
    logging.getLogger("uvicorn.access").propagate = False
    _configured = True
