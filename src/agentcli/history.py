"""Conversation history persisted as one JSON file per conversation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agentcli.config import check_path_component
from agentcli.errors import AgentError
from agentcli.llm.models import Message

logger = logging.getLogger(__name__)


class HistoryError(AgentError):
    """Conversation could not be stored or loaded."""


class ConversationNotFoundError(HistoryError):
    """No conversation file exists for the requested id."""


@dataclass(slots=True)
class HistoryMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> HistoryMessage:
        return cls(
            role=str(payload.get("role") or ""),
            content=str(payload.get("content") or ""),
            timestamp=_parse_timestamp(payload.get("timestamp")),
        )


@dataclass(slots=True)
class Conversation:
    """A user's conversation with one model."""

    conversation_id: str
    user_id: str
    model: str
    messages: list[HistoryMessage] = field(default_factory=list)
    created: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def new(cls, user_id: str, model: str) -> Conversation:
        now = datetime.now(UTC)
        return cls(
            conversation_id=f"{user_id}_{int(now.timestamp())}",
            user_id=user_id,
            model=model,
            created=now,
            updated=now,
        )

    def add_message(self, role: str, content: str) -> None:
        self.messages.append(HistoryMessage(role=role, content=content))

    def recent(self, count: int) -> list[HistoryMessage]:
        """Last ``count`` messages; all of them when ``count`` is not positive."""

        if count <= 0 or count >= len(self.messages):
            return list(self.messages)
        return self.messages[-count:]

    def to_llm_messages(self) -> list[Message]:
        return [Message(role=item.role, content=item.content) for item in self.messages]

    def clear(self) -> None:
        self.messages = []

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.conversation_id,
            "user_id": self.user_id,
            "model": self.model,
            "messages": [message.to_dict() for message in self.messages],
            "created": self.created.isoformat(),
            "updated": self.updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Conversation:
        raw_messages = payload.get("messages") or []
        return cls(
            conversation_id=str(payload["id"]),
            user_id=str(payload.get("user_id") or ""),
            model=str(payload.get("model") or ""),
            messages=[
                HistoryMessage.from_dict(item) for item in raw_messages if isinstance(item, dict)
            ],
            created=_parse_timestamp(payload.get("created")),
            updated=_parse_timestamp(payload.get("updated")),
        )


class HistoryManager:
    """Stores conversations under ``history_dir`` as ``<id>.json``."""

    def __init__(self, history_dir: Path) -> None:
        self.history_dir = history_dir

    def save(self, conversation: Conversation) -> Path:
        conversation.updated = datetime.now(UTC)
        path = self._path(conversation.conversation_id)
        try:
            self.history_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(conversation.to_dict(), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as error:
            raise HistoryError(
                f"failed to save conversation {conversation.conversation_id}: {error}",
            ) from error
        logger.info(
            "Conversation saved: id=%s messages=%d",
            conversation.conversation_id,
            len(conversation.messages),
        )
        return path

    def load(self, conversation_id: str) -> Conversation:
        path = self._path(conversation_id)
        if not path.exists():
            raise ConversationNotFoundError(f"conversation not found: {conversation_id}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return Conversation.from_dict(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as error:
            raise HistoryError(f"failed to load conversation {conversation_id}: {error}") from error

    def list(self, user_id: str = "") -> list[Conversation]:
        """Conversations of ``user_id`` (all users when empty), newest first."""

        if not self.history_dir.is_dir():
            return []
        conversations = []
        for path in sorted(self.history_dir.glob("*.json")):
            try:
                conversation = self.load(path.stem)
            except HistoryError as error:
                logger.warning(
                    "Skipping unreadable conversation file: path=%s error=%s",
                    path,
                    error,
                )
                continue
            if not user_id or conversation.user_id == user_id:
                conversations.append(conversation)
        conversations.sort(key=lambda item: item.updated, reverse=True)
        return conversations

    def delete(self, conversation_id: str) -> None:
        path = self._path(conversation_id)
        try:
            path.unlink()
        except FileNotFoundError as error:
            raise ConversationNotFoundError(f"conversation not found: {conversation_id}") from error
        logger.info("Conversation deleted: id=%s", conversation_id)

    def _path(self, conversation_id: str) -> Path:
        try:
            check_path_component(conversation_id, "conversation id")
        except ValueError as error:
            raise HistoryError(str(error)) from error
        return self.history_dir / f"{conversation_id}.json"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return datetime.now(UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)
