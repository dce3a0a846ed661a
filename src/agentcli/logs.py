"""Per-session log files under ``<log_dir>/<YYYY-MM-DD>/<session_id>.log``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from agentcli.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
PACKAGE_LOGGER = "agentcli"


@dataclass(slots=True)
class SessionLog:
    """Attached session handler; ``close()`` detaches it."""

    session_id: str
    path: Path
    handler: logging.Handler

    def close(self) -> None:
        logger.info("Session ended: session_id=%s", self.session_id)
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.removeHandler(self.handler)
        self.handler.close()


def session_log_path(log_dir: Path, session_id: str, *, now: datetime | None = None) -> Path:
    day = (now or datetime.now()).strftime("%Y-%m-%d")
    return log_dir / day / f"{session_id}.log"


def configure_session_logging(settings: Settings, session_id: str) -> SessionLog:
    """Route ``agentcli`` loggers to a dated session file."""

    path = session_log_path(settings.logging.log_dir, session_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.getLevelName(settings.logging.level))
    package_logger.addHandler(handler)

    logger.info("Session started: session_id=%s", session_id)
    return SessionLog(session_id=session_id, path=path, handler=handler)
