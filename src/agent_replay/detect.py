"""Work out which coding agent wrote a session file.

Path markers are checked first because they are cheap and unambiguous; when a
file lives somewhere unexpected, the first record is inspected for format
fingerprints instead.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)


class AgentType(Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    UNKNOWN = "unknown"


@dataclass
class AgentInfo:
    """Detected agent plus whatever version string the first record carries."""

    type: AgentType
    session_path: Path
    version: str | None = None


_PATH_MARKERS: list[tuple[str, AgentType]] = [
    (".claude", AgentType.CLAUDE),
    (".codex", AgentType.CODEX),
    (".gemini", AgentType.GEMINI),
]

_UUID_PATTERN = re.compile(r"^[a-f0-9-]{36}$", re.IGNORECASE)
_CODEX_MODEL_PATTERN = re.compile(r"^(o1|o3|o4|gpt-4|gpt-5|gpt-3\.5|davinci|codex)", re.IGNORECASE)
_GEMINI_MODEL_PATTERN = re.compile(r"^gemini", re.IGNORECASE)
_CODEX_WRAPPER_TYPES = {"session_meta", "response_item", "event_msg", "turn_context"}


def detect_from_path(path: Path | str, config=None) -> AgentType:
    """Classify a session file by the agent's storage convention.

    ~/.claude/projects/** -> claude, ~/.codex/sessions/** -> codex,
    ~/.gemini/tmp/** -> gemini. When a Config is given, paths under its
    configured session directories (e.g. a relocated CODEX_HOME) also count.
    """
    path = Path(path)
    parts = path.parts
    for marker, agent in _PATH_MARKERS:
        if marker in parts:
            return agent

    if config is not None:
        for name, base_dir in config.agent_session_dirs().items():
            if path.is_relative_to(base_dir):
                return AgentType(name)

    return AgentType.UNKNOWN


def detect_from_content(record: Any) -> AgentType:
    """Classify a session by the fingerprints in its first parsed record."""
    if not isinstance(record, dict):
        return AgentType.UNKNOWN
    # Gemini session documents carry a UUID sessionId too, so check their shape first
    if _is_gemini_document(record):
        return AgentType.GEMINI
    if _has_claude_signatures(record):
        return AgentType.CLAUDE
    if _has_codex_signatures(record):
        return AgentType.CODEX
    if _has_gemini_signatures(record):
        return AgentType.GEMINI
    return AgentType.UNKNOWN


def detect_agent(path: Path | str, record: Any = None, config=None) -> AgentType:
    """Path-based detection first, then the first record's fingerprints."""
    agent = detect_from_path(path, config)
    if agent is AgentType.UNKNOWN and record is not None:
        agent = detect_from_content(record)
    return agent


def agent_info(path: Path | str, record: Any = None, config=None) -> AgentInfo:
    agent = detect_agent(path, record, config)
    version = _extract_version(record) if isinstance(record, dict) else None
    return AgentInfo(type=agent, session_path=Path(path), version=version)


def read_first_record(path: Path) -> dict | None:
    """Return the first parseable record of a session file.

    For `.json` files the whole document is the record; for JSONL files it is
    the first non-blank line that decodes to an object.
    """
    if path.suffix.lower() == ".json":
        try:
            document = json.loads(path.read_text(encoding="utf-8", errors="replace"))
        except json.JSONDecodeError as exc:
            _LOGGER.warning("Failed to parse %s as JSON: %s", path, exc)
            return None
        return document if isinstance(document, dict) else None

    with path.open(encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(record, dict):
                return record
    return None


def _message_content(record: dict) -> list:
    message = record.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        return message["content"]
    return []


def _model_of(record: dict) -> str:
    model = record.get("model")
    if not model and isinstance(record.get("metadata"), dict):
        model = record["metadata"].get("model")
    if not model and isinstance(record.get("payload"), dict):
        model = record["payload"].get("model")
    return model if isinstance(model, str) else ""


def _has_claude_signatures(record: dict) -> bool:
    session_id = record.get("sessionId")
    if isinstance(session_id, str) and _UUID_PATTERN.match(session_id):
        return True

    for block in _message_content(record):
        if not isinstance(block, dict):
            continue
        if block.get("type") == "thinking" and block.get("signature"):
            return True
        if block.get("type") == "tool_use" and block.get("id") and block.get("name"):
            return True

    return "cwd" in record and "uuid" in record


def _has_codex_signatures(record: dict) -> bool:
    if _CODEX_MODEL_PATTERN.match(_model_of(record)):
        return True

    if record.get("function_call") or record.get("tool_calls"):
        return True

    if isinstance(record.get("choices"), list):
        return True

    # Rollout files wrap every line as {type, payload}
    if record.get("type") in _CODEX_WRAPPER_TYPES and isinstance(record.get("payload"), dict):
        return True

    message = record.get("message") if isinstance(record.get("message"), dict) else record
    tool_calls = message.get("tool_calls")
    if message.get("role") and isinstance(tool_calls, list):
        for call in tool_calls:
            if isinstance(call, dict) and call.get("type") == "function" and (call.get("function") or {}).get("name"):
                return True

    return False


def _has_gemini_signatures(record: dict) -> bool:
    if _GEMINI_MODEL_PATTERN.match(_model_of(record)):
        return True

    if isinstance(record.get("candidates"), list):
        return True

    if record.get("functionCalls") or record.get("toolConfig"):
        return True

    return _is_gemini_document(record)


def _is_gemini_document(record: dict) -> bool:
    return "projectHash" in record and isinstance(record.get("messages"), list)


def _extract_version(record: dict) -> str | None:
    model = _model_of(record)
    if not model:
        message = record.get("message")
        if isinstance(message, dict) and isinstance(message.get("model"), str):
            model = message["model"]
    if not model:
        model = record.get("claudeVersion") or record.get("version") or ""
        if not model and isinstance(record.get("metadata"), dict):
            model = record["metadata"].get("claudeVersion") or ""
    if not model:
        messages = record.get("messages")
        if isinstance(messages, list):
            for message in messages:
                if isinstance(message, dict) and isinstance(message.get("model"), str):
                    model = message["model"]
                    break
    return str(model) if model else None
