"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are an AI coding agent working on a single feature inside an isolated git worktree.

All paths you pass to tools are relative to the root of that worktree.

Tools that only inspect (read_file, list_files, search_code, list_tasks) run immediately.
Tools that change anything (write_file, edit_file, run_command, create_task,
update_task_status) are reviewed by a human first; a denied call comes back as a
denial result, so adjust your plan instead of retrying the same call.

Guidelines:
- Always read files before editing them
- Follow existing code patterns
- Make focused, minimal, REAL changes (never stub implementations)
- Run tests only when the feature asks for it

When the work is finished, reply with a short summary of what you changed and no tool calls."""


class WorkspaceConfig(BaseModel):
    """Where task records and sandboxes live."""
    repo_root: Path = Field(default=Path("."))
    data_dir: str = ".makyno"
    worktrees_dir: str = ".worktrees"
    base_branch: str = "main"
    branch_prefix: str = "feat/"
    keep_branch_on_remove: bool = False

    @property
    def features_dir(self) -> Path:
        return self.repo_root / self.data_dir / "features"

    @property
    def sandbox_root(self) -> Path:
        return self.repo_root / self.worktrees_dir


class CommandConfig(BaseModel):
    """Limits for the run_command tool."""
    timeout_seconds: float = 60.0
    max_output_bytes: int = 10 * 1024 * 1024

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {v}")
        return v

    @field_validator("max_output_bytes")
    @classmethod
    def validate_output_cap(cls, v: int) -> int:
        if v < 1024:
            raise ValueError(f"max_output_bytes must be at least 1024, got {v}")
        return v


class SessionConfig(BaseModel):
    """Agent session settings."""
    max_rounds: int = 50
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @field_validator("max_rounds")
    @classmethod
    def validate_rounds(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_rounds must be >= 1, got {v}")
        return v


class LLMConfig(BaseModel):
    """LiteLLM settings for the reasoning backend."""
    model: str = "claude-sonnet-4-5-20250929"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 8192
    timeout: int = 300


class MakynoConfig(BaseSettings):
    """Main configuration."""

    model_config = SettingsConfigDict(env_prefix="MAKYNO_", env_nested_delimiter="__")

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    commands: CommandConfig = Field(default_factory=CommandConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    log_level: str = "INFO"


_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached config if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def _load_config_from_file(config_path: Path) -> MakynoConfig:
    """Internal loader (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)
    config = MakynoConfig(**data)

    # Relative repo_root is relative to the config file, not the caller's cwd
    if not config.workspace.repo_root.is_absolute():
        config.workspace.repo_root = (config_path.parent / config.workspace.repo_root).resolve()
    return config


def load_config(config_path: Path = Path("makyno.yaml")) -> MakynoConfig:
    """Load configuration from YAML file.

    Uses mtime-based caching: returns the cached config if the file hasn't changed.
    """
    if not config_path.exists():
        logger.warning(
            f"Config file not found: {config_path}. Using default configuration."
        )
        return MakynoConfig()

    return _get_cached_or_load(config_path.resolve(), _load_config_from_file)


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` references in config data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used, which may cause errors."
            )
            return data
        return value
    return data
