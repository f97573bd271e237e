"""Parser protocol and the machinery every agent parser shares."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from ..detect import AgentType
from ..timeline import (
    FileDiff,
    Frame,
    FrameContext,
    FrameKind,
    Response,
    Thinking,
    ToolExecution,
    ToolOutput,
    UserMessage,
)
from . import (
    ContentBlock,
    Diagnostic,
    DiagnosticReason,
    Entry,
    ParsedTranscript,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolResultIndex,
    ToolUseBlock,
    TranscriptMetadata,
    UnknownBlock,
)

_LOGGER = logging.getLogger(__name__)

NO_RESULT_PLACEHOLDER = "(No result available)"

_EXIT_CODE_PATTERN = re.compile(r"Exit code: (\d+)")

# Extension -> syntax-highlighting language for file diffs.
LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "tsx",
    "js": "javascript",
    "jsx": "jsx",
    "py": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "php": "php",
    "swift": "swift",
    "kt": "kotlin",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "md": "markdown",
    "sql": "sql",
}

# Tool names across agents that read or mutate a single file.
FILE_READ_TOOLS = {"Read", "read_file"}
FILE_WRITE_TOOLS = {"Write", "write_file"}
FILE_EDIT_TOOLS = {"Edit", "replace"}


@dataclass
class ParseContext:
    """State for one parse_file call. Never shared between files."""

    path: Path
    agent: AgentType
    line: int | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    # Tool calls seen so far, by call id (Codex matches outputs against these)
    tool_calls: dict[str, ToolUseBlock] = field(default_factory=dict)
    tool_outputs: dict[str, int | None] = field(default_factory=dict)

    # Session-level facts some formats only state once (session_meta, Gemini header)
    session_id: str | None = None
    cwd: str | None = None
    model: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    project_hash: str | None = None

    def report(self, reason: DiagnosticReason, message: str, raw: Any = None, level: int = logging.WARNING) -> None:
        self.diagnostics.append(Diagnostic(reason=reason, message=message, line=self.line, raw=raw))
        where = f"{self.path}:{self.line}" if self.line is not None else str(self.path)
        _LOGGER.log(level, "%s (%s): %s", where, reason.value, message)


@runtime_checkable
class AgentParser(Protocol):
    """What each agent-specific parser provides."""

    agent: AgentType

    def read_records(self, path: Path, context: ParseContext) -> Iterator[tuple[int, Any]]:
        """Yield (1-based position, raw record) in file order."""
        ...

    def parse_entry(self, raw: Any, context: ParseContext | None = None) -> Entry | None:
        """Normalize one raw record, or return None to skip it. Never raises."""
        ...

    def collect_tool_results(self, entries: list[Entry]) -> ToolResultIndex:
        """Map tool-use id -> result across the whole session."""
        ...

    def extract_tool_execution(self, tool_use: ToolUseBlock, tool_result: ToolResultBlock | None = None) -> ToolExecution:
        ...

    def extract_frames_from_entry(self, entry: Entry, index: ToolResultIndex) -> list[Frame]:
        ...

    def project_name(self, path: Path, entries: list[Entry], context: ParseContext) -> str | None:
        ...

    def finish(self, context: ParseContext) -> None:
        """Called once after the last record has been parsed."""
        ...


# --- Template ---


def parse_file(parser: AgentParser, path: Path | str) -> ParsedTranscript:
    """Read, normalize and order one session file.

    Records are parsed in file order, unparseable ones are dropped (with a
    diagnostic), and the survivors are sorted by timestamp. Python's sort is
    stable, so entries sharing a timestamp keep their file order. I/O errors
    propagate to the caller.
    """
    path = Path(path)
    context = ParseContext(path=path, agent=parser.agent)

    entries: list[Entry] = []
    for line, raw in parser.read_records(path, context):
        context.line = line
        entry = parser.parse_entry(raw, context)
        if entry is not None:
            entries.append(entry)
    context.line = None
    parser.finish(context)

    entries.sort(key=lambda e: e.epoch_ms)

    if context.diagnostics:
        _LOGGER.info("Parsed %s with %d skipped record(s)", path, len(context.diagnostics))

    return ParsedTranscript(
        session_id=_extract_session_id(entries, path, context),
        agent=parser.agent,
        entries=entries,
        metadata=_extract_metadata(parser, entries, path, context),
        diagnostics=context.diagnostics,
    )


def _extract_session_id(entries: list[Entry], path: Path, context: ParseContext) -> str:
    if entries and entries[0].session_id:
        return entries[0].session_id
    if context.session_id:
        return context.session_id
    return path.stem


def _first(entries: list[Entry], attr: str, limit: int | None = None) -> str | None:
    for entry in entries[:limit]:
        value = getattr(entry, attr)
        if value:
            return value
    return None


def _extract_metadata(parser: AgentParser, entries: list[Entry], path: Path, context: ParseContext) -> TranscriptMetadata:
    if entries:
        start_time = entries[0].timestamp
        end_time = entries[-1].timestamp
    else:
        start_time = context.start_time or datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()
        end_time = context.end_time

    return TranscriptMetadata(
        start_time=start_time,
        end_time=end_time,
        total_entries=len(entries),
        cwd=_first(entries, "cwd") or context.cwd,
        slug=_first(entries, "slug", limit=10),
        project_name=parser.project_name(path, entries, context),
        agent_version=_first(entries, "model") or context.model,
        claude_version=_first(entries, "version") if parser.agent is AgentType.CLAUDE else None,
        git_branch=_first(entries, "git_branch"),
    )


# --- Readers ---


def read_jsonl_records(path: Path, context: ParseContext) -> Iterator[tuple[int, Any]]:
    """Stream a JSONL file line by line, skipping blank and malformed lines."""
    with path.open(encoding="utf-8", errors="replace") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                context.line = lineno
                context.report(DiagnosticReason.INVALID_JSON, f"Malformed JSON line: {exc}", raw=line)
                continue
            yield lineno, record


# --- Content blocks ---


def parse_content_blocks(content: Any, context: ParseContext | None = None) -> list[ContentBlock]:
    """Convert Anthropic-style message content (string or block list) into blocks."""
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if not isinstance(content, list):
        return []

    blocks: list[ContentBlock] = []
    for item in content:
        if isinstance(item, str):
            blocks.append(TextBlock(text=item))
            continue
        if not isinstance(item, dict):
            blocks.append(UnknownBlock(raw=item))
            continue

        block_type = item.get("type")
        if block_type == "text":
            blocks.append(TextBlock(text=str(item.get("text") or "")))
        elif block_type == "thinking":
            blocks.append(ThinkingBlock(text=str(item.get("thinking") or ""), signature=item.get("signature")))
        elif block_type == "tool_use":
            tool_input = item.get("input")
            blocks.append(ToolUseBlock(
                id=str(item.get("id") or ""),
                name=str(item.get("name") or ""),
                input=tool_input if isinstance(tool_input, dict) else {},
            ))
        elif block_type == "tool_result":
            result = item.get("content")
            if isinstance(result, list):
                result = parse_content_blocks(result, context)
            elif result is None:
                result = ""
            elif not isinstance(result, str):
                result = json.dumps(result)
            blocks.append(ToolResultBlock(
                tool_use_id=str(item.get("tool_use_id") or ""),
                content=result,
                is_error=bool(item.get("is_error")),
            ))
        else:
            blocks.append(UnknownBlock(raw=item))
            if context is not None:
                context.report(
                    DiagnosticReason.UNKNOWN_BLOCK,
                    f"Unrecognized content block type {block_type!r}",
                    raw=item,
                    level=logging.DEBUG,
                )
    return blocks


def index_tool_result_blocks(entries: list[Entry], index: ToolResultIndex | None = None) -> ToolResultIndex:
    """Collect every tool_result block found in normalized message content."""
    if index is None:
        index = {}
    for entry in entries:
        if entry.message is None:
            continue
        for block in entry.message.content:
            if isinstance(block, ToolResultBlock) and block.tool_use_id:
                index[block.tool_use_id] = block
    return index


# --- Tools ---


def tool_result_text(result: ToolResultBlock) -> str:
    if isinstance(result.content, str):
        return result.content
    return "\n".join(block.text for block in result.content if isinstance(block, TextBlock))


def infer_language(file_path: str) -> str:
    ext = file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
    return LANGUAGE_BY_EXTENSION.get(ext, "text")


def extract_tool_output(result: ToolResultBlock | None) -> ToolOutput:
    if result is None:
        return ToolOutput(content=NO_RESULT_PLACEHOLDER, is_error=False)

    content = tool_result_text(result)
    is_error = result.is_error
    exit_code = result.exit_code

    # Bash results end with "Exit code: N"
    if exit_code is None and "Exit code:" in content:
        match = _EXIT_CODE_PATTERN.search(content)
        if match:
            exit_code = int(match.group(1))
            is_error = exit_code != 0

    return ToolOutput(content=content, is_error=is_error, exit_code=exit_code)


def extract_file_diff(tool_use: ToolUseBlock) -> FileDiff | None:
    tool_input = tool_use.input
    file_path = tool_input.get("file_path")
    if not isinstance(file_path, str) or not file_path:
        return None

    if tool_use.name in FILE_WRITE_TOOLS and tool_input.get("content"):
        return FileDiff(
            file_path=file_path,
            new_content=tool_input["content"],
            language=infer_language(file_path),
        )

    if tool_use.name in FILE_EDIT_TOOLS and tool_input.get("old_string") and tool_input.get("new_string"):
        return FileDiff(
            file_path=file_path,
            old_content=tool_input["old_string"],
            new_content=tool_input["new_string"],
            language=infer_language(file_path),
        )

    return None


def extract_file_context(tool_use: ToolUseBlock, cwd: str) -> FrameContext:
    context = FrameContext(cwd=cwd)
    file_path = tool_use.input.get("file_path")
    if not isinstance(file_path, str) or not file_path:
        return context
    if tool_use.name in FILE_READ_TOOLS:
        context.files_read = [file_path]
    elif tool_use.name in FILE_WRITE_TOOLS or tool_use.name in FILE_EDIT_TOOLS:
        context.files_modified = [file_path]
    return context


def build_tool_execution(tool_use: ToolUseBlock, tool_result: ToolResultBlock | None) -> ToolExecution:
    return ToolExecution(
        tool=tool_use.name,
        input=tool_use.input,
        output=extract_tool_output(tool_result),
        file_diff=extract_file_diff(tool_use),
    )


# --- Frames ---


def frames_from_blocks(
    entry: Entry,
    index: ToolResultIndex,
    agent: AgentType,
    tool_execution: Callable[[ToolUseBlock, ToolResultBlock | None], ToolExecution],
) -> list[Frame]:
    """One frame per displayable block, in block order.

    Frame ids combine the entry id, the block kind and a per-kind counter so
    that parsing the same file twice yields the same ids.
    """
    frames: list[Frame] = []
    if entry.message is None:
        return frames

    timestamp = entry.epoch_ms
    cwd = entry.cwd or ""
    role = entry.message.role
    text_index = 0
    thinking_index = 0
    tool_index = 0

    for block in entry.message.content:
        if isinstance(block, TextBlock):
            if not block.text.strip():
                continue
            if role == "user":
                frames.append(Frame(
                    id=f"{entry.id}-user-text-{text_index}",
                    kind=FrameKind.USER_MESSAGE,
                    timestamp=timestamp,
                    agent=agent,
                    body=UserMessage(text=block.text),
                    context=FrameContext(cwd=cwd),
                ))
            elif role == "assistant":
                frames.append(Frame(
                    id=f"{entry.id}-assistant-text-{text_index}",
                    kind=FrameKind.RESPONSE,
                    timestamp=timestamp,
                    agent=agent,
                    body=Response(text=block.text),
                    context=FrameContext(cwd=cwd),
                ))
            else:
                continue
            text_index += 1

        elif isinstance(block, ThinkingBlock):
            if not block.text.strip():
                continue
            frames.append(Frame(
                id=f"{entry.id}-thinking-{thinking_index}",
                kind=FrameKind.THINKING,
                timestamp=timestamp,
                agent=agent,
                body=Thinking(text=block.text, signature=block.signature),
                context=FrameContext(cwd=cwd),
            ))
            thinking_index += 1

        elif isinstance(block, ToolUseBlock):
            result = index.get(block.id) if block.id else None
            if block.id:
                suffix = block.id
            else:
                suffix = str(tool_index)
                tool_index += 1
            frames.append(Frame(
                id=f"{entry.id}-tool-{suffix}",
                kind=FrameKind.TOOL_EXECUTION,
                timestamp=timestamp,
                agent=agent,
                body=tool_execution(block, result),
                context=extract_file_context(block, cwd),
            ))

        elif isinstance(block, ToolResultBlock):
            # Shown alongside the matching tool_use
            continue

        else:
            _LOGGER.debug("Skipping unrecognized block in entry %s: %r", entry.id, block)

    return frames
