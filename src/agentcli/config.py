"""Runtime configuration for the agent CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_TOOLS = ("write_code", "read_file", "recognize_image", "execute_command")

DEFAULT_LANGUAGES = ("python", "go", "javascript", "typescript", "java", "c", "cpp")
DEFAULT_FILE_EXTENSIONS = (
    ".py",
    ".go",
    ".js",
    ".ts",
    ".java",
    ".c",
    ".cpp",
    ".h",
    ".md",
    ".txt",
    ".json",
    ".yaml",
    ".yml",
    ".toml",
)
DEFAULT_IMAGE_FORMATS = ("png", "jpg", "jpeg", "gif", "webp")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class ApiSettings:
    """Chat-completion backend settings."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class ToolsSettings:
    """Capability registry settings."""

    enabled: tuple[str, ...] = SUPPORTED_TOOLS
    write_code_max_lines: int = 1_000
    write_code_languages: tuple[str, ...] = DEFAULT_LANGUAGES
    read_file_max_size_mb: int = 10
    read_file_extensions: tuple[str, ...] = DEFAULT_FILE_EXTENSIONS
    image_max_size_mb: int = 20
    image_formats: tuple[str, ...] = DEFAULT_IMAGE_FORMATS
    command_timeout_seconds: float = 30.0


@dataclass(slots=True)
class GraphSettings:
    """Stage graph scheduler settings."""

    max_depth: int = 10
    parallel_nodes: int = 4
    timeout_seconds: float = 300.0
    verbose: bool = False


@dataclass(slots=True)
class LoggingSettings:
    """Session log file settings."""

    level: str = "INFO"
    log_dir: Path = Path("logs")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    api: ApiSettings = field(default_factory=ApiSettings)
    tools: ToolsSettings = field(default_factory=ToolsSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    user_id: str = "default"
    history_dir: Path = Path("history")
    memory_dir: Path = Path("memory")

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with local defaults."""

        return cls(
            api=ApiSettings(
                api_key=os.getenv("AGENTCLI_API_KEY", os.getenv("OPENAI_API_KEY", "")).strip(),
                base_url=os.getenv("AGENTCLI_BASE_URL", "https://api.openai.com/v1").strip(),
                model=os.getenv("AGENTCLI_MODEL", "gpt-4o-mini").strip(),
                timeout_seconds=float(os.getenv("AGENTCLI_API_TIMEOUT_SECONDS", "60")),
            ),
            tools=ToolsSettings(
                enabled=_env_csv("AGENTCLI_TOOLS_ENABLED", SUPPORTED_TOOLS),
                write_code_max_lines=int(os.getenv("AGENTCLI_WRITE_CODE_MAX_LINES", "1000")),
                write_code_languages=_env_csv("AGENTCLI_WRITE_CODE_LANGUAGES", DEFAULT_LANGUAGES),
                read_file_max_size_mb=int(os.getenv("AGENTCLI_READ_FILE_MAX_SIZE_MB", "10")),
                read_file_extensions=_env_csv(
                    "AGENTCLI_READ_FILE_EXTENSIONS",
                    DEFAULT_FILE_EXTENSIONS,
                ),
                image_max_size_mb=int(os.getenv("AGENTCLI_IMAGE_MAX_SIZE_MB", "20")),
                image_formats=_env_csv("AGENTCLI_IMAGE_FORMATS", DEFAULT_IMAGE_FORMATS),
                command_timeout_seconds=float(
                    os.getenv("AGENTCLI_COMMAND_TIMEOUT_SECONDS", "30"),
                ),
            ),
            graph=GraphSettings(
                max_depth=int(os.getenv("AGENTCLI_GRAPH_MAX_DEPTH", "10")),
                parallel_nodes=int(os.getenv("AGENTCLI_GRAPH_PARALLEL_NODES", "4")),
                timeout_seconds=float(os.getenv("AGENTCLI_GRAPH_TIMEOUT_SECONDS", "300")),
                verbose=_env_bool("AGENTCLI_GRAPH_VERBOSE", default=False),
            ),
            logging=LoggingSettings(
                level=os.getenv("AGENTCLI_LOG_LEVEL", "INFO").strip().upper(),
                log_dir=Path(os.getenv("AGENTCLI_LOG_DIR", "logs")),
            ),
            user_id=os.getenv("AGENTCLI_USER_ID", "default").strip() or "default",
            history_dir=Path(os.getenv("AGENTCLI_HISTORY_DIR", "history")),
            memory_dir=Path(os.getenv("AGENTCLI_MEMORY_DIR", "memory")),
        )

    def validate(self) -> None:
        """Raise configuration error if required settings are missing or invalid."""

        if not self.api.api_key:
            raise ValueError(
                "No API key configured. Set AGENTCLI_API_KEY or OPENAI_API_KEY.",
            )
        parsed = urlparse(self.api.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "Invalid AGENTCLI_BASE_URL: "
                f"{self.api.base_url!r}. Expected an absolute http:// or https:// URL.",
            )
        if not self.api.model:
            raise ValueError("AGENTCLI_MODEL must not be empty.")
        if self.api.timeout_seconds <= 0:
            raise ValueError("AGENTCLI_API_TIMEOUT_SECONDS must be > 0.")
        unknown = sorted(set(self.tools.enabled) - set(SUPPORTED_TOOLS))
        if unknown:
            raise ValueError(
                f"Unsupported tools in AGENTCLI_TOOLS_ENABLED: {', '.join(unknown)}",
            )
        if self.tools.write_code_max_lines <= 0:
            raise ValueError("AGENTCLI_WRITE_CODE_MAX_LINES must be > 0.")
        if self.tools.command_timeout_seconds <= 0:
            raise ValueError("AGENTCLI_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.graph.parallel_nodes <= 0:
            raise ValueError("AGENTCLI_GRAPH_PARALLEL_NODES must be > 0.")
        if self.graph.timeout_seconds <= 0:
            raise ValueError("AGENTCLI_GRAPH_TIMEOUT_SECONDS must be > 0.")
        if self.graph.max_depth < 0:
            raise ValueError("AGENTCLI_GRAPH_MAX_DEPTH must be >= 0.")
        if self.logging.level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid AGENTCLI_LOG_LEVEL: {self.logging.level!r}. "
                f"Expected one of {', '.join(LOG_LEVELS)}.",
            )
        check_path_component(self.user_id, "AGENTCLI_USER_ID")


def check_path_component(value: str, label: str) -> str:
    """Reject values that would leave their directory when used as a file name."""

    if not value or value in {".", ".."} or any(char in value for char in "/\\\0"):
        raise ValueError(f"Invalid {label}: {value!r}. Path separators are not allowed.")
    return value


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
