"""Paths, defaults, and environment detection."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOGGER = logging.getLogger(__name__)


def _xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        _LOGGER.warning("Invalid %s=%r; using default %d", name, raw, default)
        return default
    if value <= 0:
        _LOGGER.warning("%s must be >0; using default %d", name, default)
        return default
    return value


ENV_FILE_TEMPLATE = """\
# agent-replay settings
# Sourced by the `replay` command. Existing environment variables win.

# Gaps longer than this (ms) between two frames are treated as dead air.
# REPLAY_DEAD_AIR_MS=5000

# Playback duration (ms) for a compressed dead-air gap.
# REPLAY_COMPRESSED_MS=1500

# Log level for the replay CLI: DEBUG, INFO, WARNING, ERROR
# REPLAY_LOG_LEVEL=WARNING

# Override agent homes when they live somewhere unusual.
# CODEX_HOME=~/.codex
# GEMINI_HOME=~/.gemini
"""


@dataclass
class Config:
    """Runtime configuration, resolved from env vars and defaults."""

    env_file: Path = field(default_factory=lambda: _xdg_config_home() / "agent-replay" / "env")

    # Claude Code: ~/.claude/projects/<encoded-project>/<session>.jsonl
    claude_projects_dir: Path = field(default_factory=lambda: Path.home() / ".claude" / "projects")

    # Codex CLI: $CODEX_HOME/sessions/YYYY/MM/DD/rollout-*.jsonl
    codex_home: Path = field(default_factory=lambda: Path(os.environ.get("CODEX_HOME", Path.home() / ".codex")).expanduser())

    # Gemini CLI: $GEMINI_HOME/tmp/<project-hash>/chats/session-*.json
    gemini_home: Path = field(default_factory=lambda: Path(os.environ.get("GEMINI_HOME", Path.home() / ".gemini")).expanduser())

    # Playback timing
    dead_air_threshold_ms: int = field(default_factory=lambda: _env_int("REPLAY_DEAD_AIR_MS", 5000))
    compressed_duration_ms: int = field(default_factory=lambda: _env_int("REPLAY_COMPRESSED_MS", 1500))

    log_level: str = field(default_factory=lambda: os.environ.get("REPLAY_LOG_LEVEL", "WARNING"))

    @property
    def codex_sessions_dir(self) -> Path:
        return self.codex_home / "sessions"

    @property
    def gemini_tmp_dir(self) -> Path:
        return self.gemini_home / "tmp"

    def agent_session_dirs(self) -> dict[str, Path]:
        """Session storage root for each supported agent, keyed by agent name."""
        return {
            "claude": self.claude_projects_dir,
            "codex": self.codex_sessions_dir,
            "gemini": self.gemini_tmp_dir,
        }

    def load_env_file(self) -> None:
        """Load settings from the env file into os.environ (if not already set)."""
        if not self.env_file.exists():
            return
        for line in self.env_file.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            # Don't overwrite keys already in the environment
            if key and key not in os.environ:
                os.environ[key] = value

    def ensure_env_file(self) -> bool:
        """Create the env file from template if it doesn't exist. Returns True if created."""
        if self.env_file.exists():
            return False
        self.env_file.parent.mkdir(parents=True, exist_ok=True)
        self.env_file.write_text(ENV_FILE_TEMPLATE)
        return True
