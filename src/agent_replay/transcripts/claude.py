"""Parse Claude Code transcript JSONL files.

Claude records are already close to the normalized shape: each line carries
``uuid``, ``parentUuid``, ``timestamp``, ``type``, ``cwd``, ``sessionId`` and
an Anthropic ``message`` whose content is a string or a list of text,
thinking, tool_use and tool_result blocks. Tool results arrive as
``tool_result`` blocks in a later user message, keyed by ``tool_use_id``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Iterator

from ..detect import AgentType
from ..timeline import Frame, ToolExecution
from . import (
    DiagnosticReason,
    Entry,
    EntryKind,
    Message,
    ToolResultBlock,
    ToolResultIndex,
    ToolUseBlock,
    parse_timestamp,
    to_epoch_ms,
)
from .base import (
    ParseContext,
    build_tool_execution,
    frames_from_blocks,
    index_tool_result_blocks,
    parse_content_blocks,
    read_jsonl_records,
)

# Bookkeeping lines that never carry a uuid/timestamp pair
_BOOKKEEPING_TYPES = {"summary", "file-history-snapshot"}


def decode_project_path(encoded: str) -> str:
    """Undo Claude's project directory encoding: ``-home-me-app`` -> ``/home/me/app``."""
    return re.sub(r"^-", "/", encoded).replace("-", "/")


def _infer_entry_type(raw: dict) -> str:
    message = raw.get("message")
    role = message.get("role") if isinstance(message, dict) else None
    if role in ("user", "assistant"):
        return role
    return "unknown"


class ClaudeParser:
    """Parser for ~/.claude/projects/<encoded-project>/<session>.jsonl."""

    agent = AgentType.CLAUDE

    def read_records(self, path: Path, context: ParseContext) -> Iterator[tuple[int, Any]]:
        return read_jsonl_records(path, context)

    def parse_entry(self, raw: Any, context: ParseContext | None = None) -> Entry | None:
        if not isinstance(raw, dict):
            return None

        uuid = raw.get("uuid")
        timestamp = raw.get("timestamp")
        if not uuid or not timestamp:
            if context is not None:
                level = logging.DEBUG if raw.get("type") in _BOOKKEEPING_TYPES else logging.WARNING
                context.report(DiagnosticReason.MISSING_FIELD, "Record has no uuid or timestamp", raw=raw, level=level)
            return None

        moment = parse_timestamp(timestamp)
        if moment is None:
            if context is not None:
                context.report(DiagnosticReason.INVALID_TIMESTAMP, f"Unparseable timestamp {timestamp!r}", raw=raw)
            return None

        message = None
        model = raw.get("model")
        raw_message = raw.get("message")
        if isinstance(raw_message, dict):
            role = raw_message.get("role") or raw.get("type") or ""
            message = Message(role=str(role), content=parse_content_blocks(raw_message.get("content"), context))
            model = raw_message.get("model") or model

        return Entry(
            id=str(uuid),
            timestamp=timestamp if isinstance(timestamp, str) else moment.isoformat(),
            epoch_ms=to_epoch_ms(moment),
            kind=EntryKind.from_value(raw.get("type") or _infer_entry_type(raw)),
            message=message,
            parent_id=raw.get("parentUuid"),
            cwd=raw.get("cwd"),
            session_id=raw.get("sessionId"),
            slug=raw.get("slug"),
            model=model,
            version=raw.get("version"),
            git_branch=raw.get("gitBranch"),
            raw=raw,
        )

    def collect_tool_results(self, entries: list[Entry]) -> ToolResultIndex:
        return index_tool_result_blocks(entries)

    def extract_tool_execution(self, tool_use: ToolUseBlock, tool_result: ToolResultBlock | None = None) -> ToolExecution:
        return build_tool_execution(tool_use, tool_result)

    def extract_frames_from_entry(self, entry: Entry, index: ToolResultIndex) -> list[Frame]:
        return frames_from_blocks(entry, index, self.agent, self.extract_tool_execution)

    def project_name(self, path: Path, entries: list[Entry], context: ParseContext) -> str | None:
        parts = path.parts
        if "projects" not in parts:
            return None
        position = parts.index("projects")
        if position + 1 >= len(parts) - 1:
            # The file sits directly in projects/, no project directory
            return None
        return decode_project_path(parts[position + 1])

    def finish(self, context: ParseContext) -> None:
        pass
