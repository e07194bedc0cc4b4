"""Configuration for the Ralph loop.

Loads the YAML configuration file that sits in the orchestration root and
resolves it into an immutable, validated RalphConfig with every documented
default applied. Process-level settings (config location, log level,
telemetry endpoint) come from environment variables via RuntimeSettings.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ralph_loop.errors import ConfigInvalidError, ConfigMissingError
from ralph_loop.task_id import route_repo

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"
DEFAULT_RALPH_FILE = "RALPH.md"
DEFAULT_PROGRESS_FILE = "progress.txt"
DEFAULT_PERMISSION_MODE = "acceptEdits"
DEFAULT_COMMIT_PREFIX = "ralph:"

# Primary repo slots and their accepted alias names, in routing-table order.
REPO_SLOTS: tuple[tuple[str, str, str], ...] = (
    # (slot name, alias, default task prefix)
    ("backend", "web-api", "B"),
    ("frontend", "web-client", "F"),
)


@dataclass
class RuntimeSettings:
    """Process-level settings taken from the environment.

    All settings have sensible defaults but can be overridden via environment
    variables using the from_env() factory method.
    """

    config_path: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_NAME))
    log_level: str = "INFO"
    otlp_endpoint: str = "http://localhost:4317"
    otlp_enabled: bool = False
    service_name: str = "ralph-loop"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        """Load settings with environment variable overrides.

        Environment variables:
            RALPH_CONFIG: Path to the config file (default: ./config.yaml)
            RALPH_LOG_LEVEL: Logging level (default: INFO)
            OTLP_ENDPOINT: OTLP collector endpoint (default: http://localhost:4317)
            OTLP_ENABLED: "true" to export traces and metrics (default: false)
        """
        return cls(
            config_path=Path(os.getenv("RALPH_CONFIG", DEFAULT_CONFIG_NAME)),
            log_level=os.getenv("RALPH_LOG_LEVEL", "INFO").upper(),
            otlp_endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"),
            otlp_enabled=os.getenv("OTLP_ENABLED", "false").lower() == "true",
        )


class RepoConfig(BaseModel):
    """A working tree the agent can be routed to."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    task_prefixes: tuple[str, ...] = ()
    verify_command: str = ""


class GitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature_branch: str = ""
    sync_with_main: bool = False
    auto_commit: bool = False
    commit_prefix: str = DEFAULT_COMMIT_PREFIX
    remote: str = "origin"
    main_branch: str = "main"


class LoopConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(100, gt=0)
    pause_seconds: int = Field(2, ge=0)
    retry_on_error: int = Field(0, ge=0)


class HooksConfig(BaseModel):
    """Lifecycle hook scripts, relative to the orchestration root."""

    model_config = ConfigDict(frozen=True)

    post_task: str = ""
    post_group: str = ""
    on_complete: str = ""


class PermissionsConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: str = DEFAULT_PERMISSION_MODE
    dangerous_skip_all: bool = False
    allowed_tools: tuple[str, ...] = ()


class AgentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str = "claude"


class RalphConfig(BaseModel):
    """Fully resolved runtime configuration, built once per run."""

    model_config = ConfigDict(frozen=True)

    root: Path
    ralph_file: Path
    progress_file: Path
    context_files: tuple[Path, ...] = ()
    repos: dict[str, RepoConfig]
    default_repo: str
    git: GitConfig = GitConfig()
    loop: LoopConfig = LoopConfig()
    hooks: HooksConfig = HooksConfig()
    permissions: PermissionsConfig = PermissionsConfig()
    agent: AgentConfig = AgentConfig()

    @property
    def log_dir(self) -> Path:
        return self.root / "logs"

    @property
    def prefixes_by_repo(self) -> dict[str, tuple[str, ...]]:
        return {name: repo.task_prefixes for name, repo in self.repos.items()}

    def route(self, task_id: str) -> RepoConfig:
        """Return the repo a task identifier is routed to."""
        name = route_repo(task_id, self.prefixes_by_repo, self.default_repo)
        return self.repos[name]


class ConfigDocument:
    """Dotted-key access to a parsed YAML document.

    Scalars can be looked up one, two or three levels deep ("loop",
    "loop.retry_on_error", "repos.backend.path"); lists under a one- or
    two-level key ("context", "permissions.allowed_tools"). Values are
    whitespace-trimmed and stripped of surrounding quotes. Missing keys
    return "" or [].
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self.data: Mapping[str, Any] = data or {}

    @classmethod
    def from_text(cls, text: str) -> "ConfigDocument":
        """Parse YAML text.

        Raises:
            ConfigInvalidError: If the text is not valid YAML or not a mapping
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigInvalidError(
                message=f"Invalid YAML format: {e}",
                error_code="CONF-InvalidYaml",
                details={"yaml_error": str(e)},
            ) from e

        if data is None:
            logger.warning("Empty configuration file")
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigInvalidError(
                message="Configuration must be a mapping at the top level",
                error_code="CONF-NotAMapping",
            )
        return cls(data)

    def lookup(self, key: str) -> Any:
        """Raw value at a dotted key path, or None when absent."""
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        return node

    def get(self, key: str) -> str:
        """Normalized scalar value, "" when missing or not a scalar."""
        value = self.lookup(key)
        if value is None or isinstance(value, (Mapping, list)):
            return ""
        return _normalize(value)

    def get_list(self, key: str) -> list[str]:
        """Normalized list items, skipping blanks; [] when missing."""
        value = self.lookup(key)
        if not isinstance(value, list):
            return []
        items = [_normalize(item) for item in value if item is not None]
        return [item for item in items if item]

    def keys(self, key: str) -> list[str]:
        """Child keys of a mapping node, in document order."""
        value = self.lookup(key)
        if not isinstance(value, Mapping):
            return []
        return [str(k) for k in value.keys()]


def _normalize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].strip()
    return text


def _prefixes(doc: ConfigDocument, key: str) -> list[str]:
    """task_prefixes may be a list or a (comma-separated) scalar."""
    items = doc.get_list(key)
    if not items:
        items = doc.get(key).split(",")
    return [_normalize(item) for item in items if _normalize(item)]


def _resolve_path(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _resolve_repos(doc: ConfigDocument, root: Path) -> tuple[dict[str, RepoConfig], str]:
    repos: dict[str, RepoConfig] = {}
    consumed: set[str] = set()

    for slot, alias, default_prefix in REPO_SLOTS:
        consumed.update((slot, alias))
        source = slot if doc.get(f"repos.{slot}.path") else alias
        path_value = doc.get(f"repos.{source}.path")
        if not path_value:
            continue
        prefixes = _prefixes(doc, f"repos.{source}.task_prefixes") or [default_prefix]
        repos[slot] = RepoConfig(
            name=slot,
            path=_resolve_path(root, path_value),
            task_prefixes=tuple(prefixes),
            verify_command=doc.get(f"repos.{source}.verify"),
        )

    for name in doc.keys("repos"):
        if name in consumed:
            continue
        path_value = doc.get(f"repos.{name}.path")
        if not path_value:
            logger.warning(f"Repo '{name}' has no path configured, ignoring it")
            continue
        repos[name] = RepoConfig(
            name=name,
            path=_resolve_path(root, path_value),
            task_prefixes=tuple(_prefixes(doc, f"repos.{name}.task_prefixes")),
            verify_command=doc.get(f"repos.{name}.verify"),
        )

    if not repos:
        raise ConfigInvalidError(
            message="No repository paths configured; cannot route tasks",
            error_code="CONF-NoRepos",
            details={"expected": [f"repos.{slot}.path" for slot, _, _ in REPO_SLOTS]},
        )

    default_repo = "frontend" if "frontend" in repos else list(repos)[-1]
    return repos, default_repo


def _require_file(root: Path, value: str, label: str) -> Path:
    path = _resolve_path(root, value)
    if not path.is_file():
        raise ConfigInvalidError(
            message=f"{label} not found: {path}",
            error_code="CONF-FileNotFound",
            details={"path": str(path)},
        )
    return path


def resolve_config(doc: ConfigDocument, root: Path) -> RalphConfig:
    """Apply defaults and validation to a parsed document.

    Args:
        doc: Parsed configuration document
        root: Orchestration root that relative paths resolve against

    Returns:
        Validated RalphConfig

    Raises:
        ConfigInvalidError: If required files are missing, no repo resolves,
            or a value fails validation
    """
    root = root.resolve()
    ralph_file = _require_file(root, doc.get("ralph_file") or DEFAULT_RALPH_FILE, "Task file")
    progress_file = _require_file(
        root, doc.get("progress_file") or DEFAULT_PROGRESS_FILE, "Progress file"
    )

    context_files: list[Path] = []
    for entry in doc.get_list("context"):
        resolved = _resolve_path(root, entry)
        if resolved.is_file():
            context_files.append(resolved)
        else:
            logger.warning(f"Context file not found: {entry}")

    repos, default_repo = _resolve_repos(doc, root)

    try:
        return RalphConfig(
            root=root,
            ralph_file=ralph_file,
            progress_file=progress_file,
            context_files=tuple(context_files),
            repos=repos,
            default_repo=default_repo,
            git=GitConfig(
                feature_branch=doc.get("git.feature_branch"),
                sync_with_main=doc.get("git.sync_with_main") or "false",
                auto_commit=doc.get("git.auto_commit") or "false",
                commit_prefix=doc.get("git.commit_message_prefix") or DEFAULT_COMMIT_PREFIX,
                remote=doc.get("git.remote") or "origin",
                main_branch=doc.get("git.main_branch") or "main",
            ),
            loop=LoopConfig(
                max_iterations=doc.get("loop.max_iterations") or "100",
                pause_seconds=doc.get("loop.pause_between_seconds") or "2",
                retry_on_error=doc.get("loop.retry_on_error") or "0",
            ),
            hooks=HooksConfig(
                post_task=doc.get("hooks.post_task"),
                post_group=doc.get("hooks.post_group"),
                on_complete=doc.get("hooks.on_complete"),
            ),
            permissions=PermissionsConfig(
                mode=doc.get("permissions.mode") or DEFAULT_PERMISSION_MODE,
                dangerous_skip_all=doc.get("permissions.dangerous_skip_all") or "false",
                allowed_tools=tuple(doc.get_list("permissions.allowed_tools")),
            ),
            agent=AgentConfig(command=doc.get("agent.command") or "claude"),
        )
    except ValidationError as e:
        raise ConfigInvalidError(
            message=f"Configuration validation failed: {e}",
            error_code="CONF-ValidationFailed",
            details={"validation_errors": e.errors()},
        ) from e


def load_config(config_path: Path) -> RalphConfig:
    """Load and resolve the configuration file.

    Relative paths inside the file resolve against the directory that
    contains it (the orchestration root).

    Raises:
        ConfigMissingError: If the config file does not exist
        ConfigInvalidError: If the file is invalid or incomplete
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.is_file():
        raise ConfigMissingError(
            message=f"Config file not found: {config_path}",
            error_code="CONF-FileNotFound",
            details={"path": str(config_path)},
        )

    doc = ConfigDocument.from_text(config_path.read_text(encoding="utf-8"))
    config = resolve_config(doc, config_path.parent)
    logger.debug(f"Loaded configuration from {config_path}")
    return config
