"""Transcript parsers for Claude Code, Codex CLI and Gemini CLI.

Every agent's on-disk format is normalised into the same Entry/ContentBlock
shapes defined here; the per-agent modules only know how to get there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from ..detect import AgentType

if TYPE_CHECKING:
    from ..config import Config
    from ..timeline import SessionTimeline
    from .base import AgentParser

_LOGGER = logging.getLogger(__name__)


# --- Content blocks ---


@dataclass
class TextBlock:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass
class ThinkingBlock:
    text: str
    signature: str | None = None

    def to_dict(self) -> dict:
        data = {"type": "thinking", "thinking": self.text}
        if self.signature is not None:
            data["signature"] = self.signature
        return data


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str | list[ContentBlock] = ""
    is_error: bool = False
    exit_code: int | None = None  # only when the agent reports one structurally

    def to_dict(self) -> dict:
        content = self.content if isinstance(self.content, str) else [b.to_dict() for b in self.content]
        data = {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": content, "is_error": self.is_error}
        if self.exit_code is not None:
            data["exit_code"] = self.exit_code
        return data


@dataclass
class UnknownBlock:
    """A block of a kind we don't understand, kept verbatim for diagnostics."""

    raw: Any

    def to_dict(self) -> dict:
        return self.raw if isinstance(self.raw, dict) else {"type": "unknown", "value": self.raw}


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]

ToolResultIndex = dict[str, ToolResultBlock]


# --- Entries ---


class EntryKind(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: Any) -> EntryKind:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Message:
    """Role plus ordered content blocks."""

    role: str  # "user", "assistant" or "system"
    content: list[ContentBlock] = field(default_factory=list)


@dataclass
class Entry:
    """One normalized log record."""

    id: str
    timestamp: str  # ISO 8601, as written by the agent
    epoch_ms: int
    kind: EntryKind
    message: Message | None = None
    parent_id: str | None = None
    cwd: str | None = None
    session_id: str | None = None
    slug: str | None = None
    model: str | None = None
    version: str | None = None
    git_branch: str | None = None
    raw: dict = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "uuid": self.id,
            "timestamp": self.timestamp,
            "type": self.kind.value,
        }
        if self.parent_id is not None:
            data["parentUuid"] = self.parent_id
        if self.message is not None:
            data["message"] = {
                "role": self.message.role,
                "content": [block.to_dict() for block in self.message.content],
            }
        for key, value in (
            ("cwd", self.cwd),
            ("sessionId", self.session_id),
            ("slug", self.slug),
            ("model", self.model),
        ):
            if value is not None:
                data[key] = value
        return data


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 string or a numeric epoch (seconds or ms) into an aware datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# --- Parse results ---


class DiagnosticReason(Enum):
    INVALID_JSON = "invalid_json"
    MISSING_FIELD = "missing_field"
    INVALID_TIMESTAMP = "invalid_timestamp"
    UNKNOWN_BLOCK = "unknown_block"
    UNKNOWN_SHAPE = "unknown_shape"
    ORPHAN_RESULT = "orphan_result"


@dataclass
class Diagnostic:
    """Why a record (or a block inside one) was skipped."""

    reason: DiagnosticReason
    message: str
    line: int | None = None  # 1-based record position in the file
    raw: Any = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {"reason": self.reason.value, "message": self.message, "line": self.line}


@dataclass
class TranscriptMetadata:
    start_time: str
    end_time: str | None = None
    total_entries: int = 0
    cwd: str | None = None
    slug: str | None = None
    project_name: str | None = None
    agent_version: str | None = None
    claude_version: str | None = None
    git_branch: str | None = None


@dataclass
class ParsedTranscript:
    session_id: str
    agent: AgentType
    entries: list[Entry]
    metadata: TranscriptMetadata
    diagnostics: list[Diagnostic] = field(default_factory=list)


# --- Parser dispatch ---

_PARSERS: dict[AgentType, AgentParser] | None = None


def _registry() -> dict[AgentType, AgentParser]:
    global _PARSERS
    if _PARSERS is None:
        from .claude import ClaudeParser
        from .codex import CodexParser
        from .gemini import GeminiParser

        _PARSERS = {
            AgentType.CLAUDE: ClaudeParser(),
            AgentType.CODEX: CodexParser(),
            AgentType.GEMINI: GeminiParser(),
        }
    return _PARSERS


def get_parser(agent: AgentType | str) -> AgentParser:
    """Resolve an agent type to its parser. Unknown agents fall back to Claude."""
    if isinstance(agent, str):
        try:
            agent = AgentType(agent)
        except ValueError:
            raise ValueError(
                f"Unknown agent type: {agent!r}. "
                f"Use one of: {', '.join(a.value for a in AgentType)}."
            ) from None

    parsers = _registry()
    if agent is AgentType.UNKNOWN:
        _LOGGER.warning("Unknown agent type detected, falling back to Claude parser")
        return parsers[AgentType.CLAUDE]

    parser = parsers.get(agent)
    if parser is None:
        available = ", ".join(a.value for a in parsers)
        raise ValueError(f"No parser available for agent type {agent.value!r}. Available parsers: {available}")
    return parser


def available_agents() -> list[AgentType]:
    return list(_registry())


def has_parser(agent: AgentType) -> bool:
    return agent in _registry() or agent is AgentType.UNKNOWN


def resolve_agent(path: Path, agent: AgentType | None = None, config: Config | None = None) -> AgentType:
    """Declared agent wins; otherwise detect from the path, then from the first record."""
    from ..detect import detect_from_content, detect_from_path, read_first_record

    if agent is not None and agent is not AgentType.UNKNOWN:
        return agent
    detected = detect_from_path(path, config)
    if detected is AgentType.UNKNOWN:
        detected = detect_from_content(read_first_record(path))
    return detected


def parse_session(path: Path, agent: AgentType | None = None, config: Config | None = None) -> ParsedTranscript:
    """Parse a session file with the parser for its (declared or detected) agent."""
    from .base import parse_file

    parser = get_parser(resolve_agent(path, agent, config))
    return parse_file(parser, path)


def detect_agent_from_transcript(transcript: ParsedTranscript) -> AgentType:
    """Look for agent-specific markers in the first few parsed entries."""
    for entry in transcript.entries[:5]:
        if entry.message is not None:
            for block in entry.message.content:
                if isinstance(block, ThinkingBlock) and block.signature:
                    return AgentType.CLAUDE
                if isinstance(block, ToolUseBlock) and entry.raw.get("type") in ("user", "assistant"):
                    return AgentType.CLAUDE

        model = entry.model or ""
        if model.startswith(("o1", "o3", "gpt")):
            return AgentType.CODEX
        if model.startswith("gemini"):
            return AgentType.GEMINI
        payload = entry.raw.get("payload") if isinstance(entry.raw.get("payload"), dict) else entry.raw
        if payload.get("function_call") or payload.get("tool_calls"):
            return AgentType.CODEX

    return AgentType.UNKNOWN


def load_timeline(path: Path, agent: AgentType | None = None, config: Config | None = None) -> SessionTimeline:
    """Parse a session file and build its playback timeline in one call."""
    from .base import parse_file
    from ..timeline import build_timeline

    parser = get_parser(resolve_agent(path, agent, config))
    transcript = parse_file(parser, path)
    return build_timeline(parser, transcript, config)
