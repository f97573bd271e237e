"""Parse Gemini CLI session files.

Unlike the JSONL agents, Gemini keeps a whole session in one JSON document
under ``~/.gemini/tmp/<project-hash>/chats/``::

    {"sessionId": ..., "projectHash": ..., "startTime": ..., "lastUpdated": ...,
     "messages": [{"id", "timestamp", "type", "content", "thoughts", "toolCalls", "model"}]}

Tool results are stored inline on each tool call rather than in a later
message.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Iterator

from ..detect import AgentType
from ..timeline import Frame, ToolExecution
from . import (
    ContentBlock,
    DiagnosticReason,
    Entry,
    EntryKind,
    Message,
    TextBlock,
    ThinkingBlock,
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
)

_LOGGER = logging.getLogger(__name__)

_ASSISTANT_TYPES = {"gemini", "model"}
_SHELL_TOOLS = {"shell", "run_shell_command"}
_EXIT_CODE_PATTERN = re.compile(r"exit code[:\s]+(\d+)", re.IGNORECASE)
_THOUGHT_SEPARATOR = "\n\n---\n\n"
# Gemini names project directories by a hex digest of the project root
_PROJECT_HASH_PATTERN = re.compile(r"^[0-9a-f]{8,}$")


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part["text"] for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


def format_thoughts(thoughts: Any) -> str:
    """Collapse a message's thoughts into one markdown block."""
    if not isinstance(thoughts, list):
        return ""
    parts = []
    for thought in thoughts:
        if not isinstance(thought, dict):
            continue
        subject = thought.get("subject") or ""
        description = thought.get("description") or ""
        if subject or description:
            parts.append(f"**{subject}**\n\n{description}")
    return _THOUGHT_SEPARATOR.join(parts)


def inline_tool_result(tool_call: dict) -> ToolResultBlock | None:
    """The result Gemini stores on a tool call, if it has one."""
    results = tool_call.get("result")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return None
    function_response = results[0].get("functionResponse")
    if not isinstance(function_response, dict):
        return None
    response = function_response.get("response")
    if not isinstance(response, dict):
        response = {}
    output = response.get("output") or response.get("error") or ""
    return ToolResultBlock(
        tool_use_id=str(tool_call.get("id") or ""),
        content=output if isinstance(output, str) else json.dumps(output),
        is_error=tool_call.get("status") == "error" or bool(response.get("error")),
    )


class GeminiParser:
    """Parser for ~/.gemini/tmp/<project-hash>/chats/session-*.json."""

    agent = AgentType.GEMINI

    def read_records(self, path: Path, context: ParseContext) -> Iterator[tuple[int, Any]]:
        """Load the session document and yield its messages.

        Raises:
            ValueError: If the file is not a Gemini session document.
        """
        with path.open(encoding="utf-8", errors="replace") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Malformed Gemini session file {path}: {exc}") from exc

        if not isinstance(document, dict) or not isinstance(document.get("messages"), list):
            raise ValueError(f"Not a Gemini session document (no messages list): {path}")

        context.session_id = document.get("sessionId") or context.session_id
        context.project_hash = document.get("projectHash") or context.project_hash
        context.start_time = document.get("startTime") or context.start_time
        context.end_time = document.get("lastUpdated") or context.end_time

        _LOGGER.debug("Loaded Gemini session %s with %d messages", path, len(document["messages"]))
        for position, message in enumerate(document["messages"], start=1):
            yield position, message

    def parse_entry(self, raw: Any, context: ParseContext | None = None) -> Entry | None:
        if not isinstance(raw, dict):
            return None

        message_type = raw.get("type")
        if message_type == "user":
            role = "user"
        elif message_type in _ASSISTANT_TYPES:
            role = "assistant"
        else:
            # system, info, error and warning notices are not part of the conversation
            return None

        message = self._build_message(raw, role)
        if not message.content:
            if context is not None:
                context.report(
                    DiagnosticReason.UNKNOWN_SHAPE,
                    f"Gemini {message_type} message has no content",
                    raw=raw,
                    level=logging.DEBUG,
                )
            return None

        timestamp = raw.get("timestamp")
        moment = parse_timestamp(timestamp)
        if moment is None:
            if context is not None:
                reason = DiagnosticReason.INVALID_TIMESTAMP if timestamp else DiagnosticReason.MISSING_FIELD
                context.report(reason, f"Gemini message without a usable timestamp ({timestamp!r})", raw=raw)
            return None

        return Entry(
            id=str(raw.get("id") or self._derive_id(raw, context)),
            timestamp=timestamp if isinstance(timestamp, str) else moment.isoformat(),
            epoch_ms=to_epoch_ms(moment),
            kind=EntryKind(role),
            message=message,
            session_id=context.session_id if context is not None else None,
            model=raw.get("model"),
            raw=raw,
        )

    def collect_tool_results(self, entries: list[Entry]) -> ToolResultIndex:
        index: ToolResultIndex = {}
        for entry in entries:
            tool_calls = entry.raw.get("toolCalls")
            if not isinstance(tool_calls, list):
                continue
            for tool_call in tool_calls:
                if not isinstance(tool_call, dict):
                    continue
                result = inline_tool_result(tool_call)
                if result is not None and result.tool_use_id:
                    index[result.tool_use_id] = result
        return index_tool_result_blocks(entries, index)

    def extract_tool_execution(self, tool_use: ToolUseBlock, tool_result: ToolResultBlock | None = None) -> ToolExecution:
        execution = build_tool_execution(tool_use, tool_result)
        if tool_use.name in _SHELL_TOOLS and execution.output.exit_code is None:
            match = _EXIT_CODE_PATTERN.search(execution.output.content)
            if match:
                execution.output.exit_code = int(match.group(1))
        return execution

    def extract_frames_from_entry(self, entry: Entry, index: ToolResultIndex) -> list[Frame]:
        return frames_from_blocks(entry, index, self.agent, self.extract_tool_execution)

    def project_name(self, path: Path, entries: list[Entry], context: ParseContext) -> str | None:
        project_hash = None
        parts = path.parts
        for position, part in enumerate(parts[:-2]):
            if part != "tmp" or not _PROJECT_HASH_PATTERN.match(parts[position + 1]):
                continue
            if parts[position + 2] == "chats" or (position > 0 and parts[position - 1] == ".gemini"):
                project_hash = parts[position + 1]
        project_hash = project_hash or context.project_hash
        if not project_hash:
            return None
        return f"Gemini Project ({project_hash[:8]})"

    def finish(self, context: ParseContext) -> None:
        pass

    def _derive_id(self, raw: dict, context: ParseContext | None) -> str:
        if context is not None and context.line is not None:
            return f"gemini-{context.line}"
        digest = hashlib.sha1(json.dumps(raw, sort_keys=True, default=str).encode("utf-8")).hexdigest()
        return f"gemini-{digest[:16]}"

    def _build_message(self, raw: dict, role: str) -> Message:
        content: list[ContentBlock] = []

        thinking = format_thoughts(raw.get("thoughts"))
        if thinking:
            content.append(ThinkingBlock(text=thinking))

        text = _content_text(raw.get("content"))
        if text:
            content.append(TextBlock(text=text))

        tool_calls = raw.get("toolCalls")
        if isinstance(tool_calls, list):
            for tool_call in tool_calls:
                if not isinstance(tool_call, dict):
                    continue
                args = tool_call.get("args")
                content.append(ToolUseBlock(
                    id=str(tool_call.get("id") or ""),
                    name=str(tool_call.get("name") or ""),
                    input=args if isinstance(args, dict) else {},
                ))
                result = inline_tool_result(tool_call)
                if result is not None:
                    content.append(result)

        return Message(role=role, content=content)
