"""Parse Codex CLI session transcripts.

Codex writes JSONL "rollout" files where each line is wrapped as
``{timestamp, type, payload}``. Older sessions hold bare OpenAI chat records
instead (``role``, ``content``, ``tool_calls``). Both shapes are normalized
here; tool calls use OpenAI function calling and their results arrive as
separate records keyed by call id.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path, PurePosixPath
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
    read_jsonl_records,
)

_LOGGER = logging.getLogger(__name__)

_ERROR_MARKERS = ("error:", "exception:", "failed:", "traceback")
_EXIT_CODE_PATTERN = re.compile(r"exit code[:\s]+(\d+)", re.IGNORECASE)
_TEXT_PART_TYPES = {"text", "input_text", "output_text"}
_SKIPPED_ROLES = {"developer", "system"}
_TOOL_CALL_TYPES = {"function_call", "custom_tool_call"}
_TOOL_OUTPUT_TYPES = {"function_call_output", "custom_tool_call_output"}


def content_as_string(content: Any) -> str:
    """Flatten Codex content (string or list of text parts) to plain text."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") in _TEXT_PART_TYPES and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "\n".join(parts)
    return ""


def is_error_content(content: str) -> bool:
    """Heuristic error check for tool output text."""
    if not content:
        return False
    lowered = content.lower()
    if any(marker in lowered for marker in _ERROR_MARKERS):
        return True
    match = _EXIT_CODE_PATTERN.search(content)
    return bool(match and int(match.group(1)) != 0)


def parse_arguments(arguments: Any) -> dict[str, Any]:
    """Decode an OpenAI ``function.arguments`` JSON string.

    Arguments that don't decode to an object are kept as ``{"_raw": ...}`` so
    the call itself is never lost.
    """
    if isinstance(arguments, dict):
        return arguments
    if arguments is None or arguments == "":
        return {}
    if not isinstance(arguments, str):
        return {"_raw": arguments}
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError:
        return {"_raw": arguments}
    return decoded if isinstance(decoded, dict) else {"_raw": arguments}


def _unwrap_output(output: Any) -> tuple[str, int | None]:
    """Split a function_call_output into (text, exit code).

    Shell outputs are JSON envelopes: {"output": "...", "metadata": {"exit_code": 0}}.
    """
    envelope = output
    if isinstance(output, str):
        try:
            envelope = json.loads(output)
        except json.JSONDecodeError:
            return output, None
    if isinstance(envelope, dict) and "output" in envelope:
        metadata = envelope.get("metadata") if isinstance(envelope.get("metadata"), dict) else {}
        exit_code = metadata.get("exit_code")
        text = envelope["output"]
        return (text if isinstance(text, str) else json.dumps(text)), (exit_code if isinstance(exit_code, int) else None)
    if isinstance(output, str):
        return output, None
    return content_as_string(output) or json.dumps(output), None


def _exit_code_from_text(text: str) -> int | None:
    match = _EXIT_CODE_PATTERN.search(text)
    return int(match.group(1)) if match else None


def _derive_id(raw: dict, context: ParseContext | None) -> str:
    # Stable across re-parses of the same file
    if context is not None and context.line is not None:
        return f"codex-{context.line}"
    digest = hashlib.sha1(json.dumps(raw, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"codex-{digest[:16]}"


def _entry_kind(role: str | None) -> EntryKind:
    if role in ("user", "assistant", "system"):
        return EntryKind(role)
    return EntryKind.UNKNOWN


class CodexParser:
    """Parser for ~/.codex/sessions/**/rollout-*.jsonl."""

    agent = AgentType.CODEX

    def read_records(self, path: Path, context: ParseContext) -> Iterator[tuple[int, Any]]:
        return read_jsonl_records(path, context)

    def parse_entry(self, raw: Any, context: ParseContext | None = None) -> Entry | None:
        if not isinstance(raw, dict):
            return None

        wrapper_type = raw.get("type")
        payload = raw.get("payload") if isinstance(raw.get("payload"), dict) else None

        # Session-level records: remember what they say, emit nothing
        if wrapper_type == "session_meta":
            if context is not None and payload is not None:
                self._remember_session(raw, payload, context)
            return None
        if wrapper_type == "turn_context":
            if context is not None and payload is not None:
                context.cwd = payload.get("cwd") or context.cwd
                context.model = payload.get("model") or context.model
            return None
        if wrapper_type == "event_msg":
            # UI events duplicate the response items
            return None

        record = payload if payload is not None else raw
        item_type = record.get("type")
        role = record.get("role")

        if role in _SKIPPED_ROLES:
            return None

        if item_type in _TOOL_CALL_TYPES:
            message = self._tool_call_message(record, context)
        elif item_type in _TOOL_OUTPUT_TYPES:
            message = self._tool_output_message(record, context)
        elif item_type == "reasoning":
            message = self._reasoning_message(record)
        elif role:
            message = self._build_message(record, context)
        else:
            if context is not None and (item_type or record.get("content") or record.get("tool_calls")):
                context.report(
                    DiagnosticReason.UNKNOWN_SHAPE,
                    f"Unrecognized Codex record type {item_type or wrapper_type!r}",
                    raw=raw,
                    level=logging.DEBUG,
                )
            return None

        if message is None:
            return None

        timestamp = (
            raw.get("timestamp")
            or record.get("timestamp")
            or record.get("created_at")
            or record.get("created")
            or raw.get("created")
        )
        moment = parse_timestamp(timestamp)
        if moment is None:
            if context is not None:
                reason = DiagnosticReason.INVALID_TIMESTAMP if timestamp else DiagnosticReason.MISSING_FIELD
                context.report(reason, f"Codex record without a usable timestamp ({timestamp!r})", raw=raw)
            return None

        return Entry(
            id=str(record.get("id") or raw.get("id") or _derive_id(raw, context)),
            timestamp=timestamp if isinstance(timestamp, str) else moment.isoformat(),
            epoch_ms=to_epoch_ms(moment),
            kind=_entry_kind(message.role),
            message=message,
            cwd=record.get("cwd") or raw.get("cwd") or (context.cwd if context is not None else None),
            session_id=context.session_id if context is not None else None,
            model=record.get("model") or raw.get("model") or (context.model if context is not None else None),
            raw=raw,
        )

    def collect_tool_results(self, entries: list[Entry]) -> ToolResultIndex:
        index: ToolResultIndex = {}
        for entry in entries:
            record = entry.raw.get("payload") if isinstance(entry.raw.get("payload"), dict) else entry.raw
            if record.get("role") == "tool" and record.get("tool_call_id"):
                content = content_as_string(record.get("content"))
                index[record["tool_call_id"]] = ToolResultBlock(
                    tool_use_id=record["tool_call_id"],
                    content=content,
                    is_error=is_error_content(content),
                    exit_code=_exit_code_from_text(content),
                )
        # Rollout outputs were normalized into tool_result blocks at parse time
        return index_tool_result_blocks(entries, index)

    def extract_tool_execution(self, tool_use: ToolUseBlock, tool_result: ToolResultBlock | None = None) -> ToolExecution:
        return build_tool_execution(tool_use, tool_result)

    def extract_frames_from_entry(self, entry: Entry, index: ToolResultIndex) -> list[Frame]:
        return frames_from_blocks(entry, index, self.agent, self.extract_tool_execution)

    def project_name(self, path: Path, entries: list[Entry], context: ParseContext) -> str | None:
        cwd = context.cwd or next((e.cwd for e in entries if e.cwd), None)
        if not cwd:
            return None
        return PurePosixPath(cwd.rstrip("/")).name or None

    def finish(self, context: ParseContext) -> None:
        for call_id, line in context.tool_outputs.items():
            if call_id not in context.tool_calls:
                context.line = line
                context.report(
                    DiagnosticReason.ORPHAN_RESULT,
                    f"Tool output for unknown call {call_id!r}",
                    level=logging.INFO,
                )
        context.line = None

    # --- Record shapes ---

    def _remember_session(self, raw: dict, payload: dict, context: ParseContext) -> None:
        context.session_id = payload.get("id") or context.session_id
        context.cwd = payload.get("cwd") or context.cwd
        context.model = payload.get("model") or context.model
        context.start_time = payload.get("timestamp") or raw.get("timestamp") or context.start_time

    def _register_call(self, block: ToolUseBlock, context: ParseContext | None) -> None:
        if context is not None and block.id:
            context.tool_calls[block.id] = block

    def _register_output(self, call_id: str, context: ParseContext | None) -> None:
        if context is not None and call_id:
            context.tool_outputs[call_id] = context.line

    def _build_message(self, record: dict, context: ParseContext | None) -> Message | None:
        """Normalize an OpenAI chat record (user/assistant/tool role)."""
        role = record.get("role")

        if role == "tool":
            call_id = str(record.get("tool_call_id") or "")
            if not call_id:
                return None
            text = content_as_string(record.get("content"))
            self._register_output(call_id, context)
            return Message(role="assistant", content=[ToolResultBlock(
                tool_use_id=call_id,
                content=text,
                is_error=is_error_content(text),
                exit_code=_exit_code_from_text(text),
            )])

        content: list[ContentBlock] = []
        text = content_as_string(record.get("content"))
        if text:
            content.append(TextBlock(text=text))

        tool_calls = record.get("tool_calls")
        if isinstance(tool_calls, list):
            for call in tool_calls:
                if not isinstance(call, dict) or call.get("type") != "function":
                    continue
                function = call.get("function")
                if not isinstance(function, dict):
                    continue
                block = ToolUseBlock(
                    id=str(call.get("id") or ""),
                    name=str(function.get("name") or ""),
                    input=parse_arguments(function.get("arguments")),
                )
                self._register_call(block, context)
                content.append(block)

        # Pre-tools OpenAI format: a single function_call on the message
        function_call = record.get("function_call")
        if isinstance(function_call, dict) and function_call.get("name"):
            block = ToolUseBlock(
                id=str(record.get("tool_call_id") or ""),
                name=str(function_call["name"]),
                input=parse_arguments(function_call.get("arguments")),
            )
            self._register_call(block, context)
            content.append(block)

        if not content:
            return None
        return Message(role=str(role), content=content)

    def _tool_call_message(self, record: dict, context: ParseContext | None) -> Message | None:
        call_id = str(record.get("call_id") or record.get("id") or "")
        arguments = record.get("arguments") if "arguments" in record else record.get("input")
        block = ToolUseBlock(
            id=call_id,
            name=str(record.get("name") or ""),
            input=parse_arguments(arguments),
        )
        self._register_call(block, context)
        return Message(role="assistant", content=[block])

    def _tool_output_message(self, record: dict, context: ParseContext | None) -> Message | None:
        call_id = str(record.get("call_id") or "")
        if not call_id:
            if context is not None:
                context.report(DiagnosticReason.MISSING_FIELD, "Tool output without call_id", raw=record)
            return None
        text, exit_code = _unwrap_output(record.get("output"))
        if exit_code is None:
            exit_code = _exit_code_from_text(text)
        self._register_output(call_id, context)
        return Message(role="assistant", content=[ToolResultBlock(
            tool_use_id=call_id,
            content=text,
            is_error=is_error_content(text) or (exit_code is not None and exit_code != 0),
            exit_code=exit_code,
        )])

    def _reasoning_message(self, record: dict) -> Message | None:
        parts = []
        for key in ("summary", "content"):
            items = record.get(key)
            if not isinstance(items, list):
                continue
            for item in items:
                if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip():
                    parts.append(item["text"])
        if not parts:
            # Encrypted-only reasoning has nothing to show
            return None
        return Message(role="assistant", content=[ThinkingBlock(text="\n\n".join(parts))])
