"""Per-user persona memory stored as small JSON files."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from agentcli.config import check_path_component
from agentcli.errors import AgentError

logger = logging.getLogger(__name__)


class MemoryStoreError(AgentError):
    """Memory file could not be written or decoded."""


def memory_path(memory_dir: Path, user_id: str) -> Path:
    try:
        check_path_component(user_id, "user id")
    except ValueError as error:
        raise MemoryStoreError(str(error)) from error
    return memory_dir / f"{user_id}.json"


def save_memory(memory_dir: Path, user_id: str, text: str) -> Path:
    """Persist ``text`` as the persona memory of ``user_id``."""

    path = memory_path(memory_dir, user_id)
    payload = {
        "user_id": user_id,
        "memory": text,
        "updated_at": datetime.now(UTC).isoformat(),
    }
    try:
        memory_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as error:
        raise MemoryStoreError(f"failed to write memory file {path}: {error}") from error
    logger.info("Memory saved: user=%s chars=%d", user_id, len(text))
    return path


def load_memory(memory_dir: Path, user_id: str) -> str:
    """Return the stored persona memory, or ``""`` when none was saved."""

    path = memory_path(memory_dir, user_id)
    if not path.exists():
        return ""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise MemoryStoreError(f"failed to read memory file {path}: {error}") from error
    if not isinstance(payload, dict):
        raise MemoryStoreError(f"memory file {path} does not hold an object")
    return str(payload.get("memory") or "")
