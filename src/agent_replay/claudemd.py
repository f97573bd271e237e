"""Find CLAUDE.md project-memory files that were loaded into a session.

Claude Code inlines them as ``Contents of /abs/path/CLAUDE.md:`` followed by
the file body. Only extraction happens here; storing snapshots and
deduplicating them across sessions is up to the caller.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from .transcripts import Entry, TextBlock, ThinkingBlock, ToolResultBlock

_CLAUDE_MD_PATTERN = re.compile(
    r"Contents of ([^\s:]+CLAUDE\.md)(?:\s*\([^)]+\))?:\s*\n([\s\S]*?)(?=\nContents of [^\s:]+:|\Z)",
    re.IGNORECASE,
)


@dataclass
class ClaudeMdReference:
    path: str
    loaded_at: str  # ISO 8601 timestamp of the entry it was first seen in
    content: str | None = None
    content_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "loadedAt": self.loaded_at}
        if self.content is not None:
            data["content"] = self.content
        if self.content_hash is not None:
            data["contentHash"] = self.content_hash
        return data


def compute_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_placeholder_path(path: str) -> bool:
    """True for example paths from docs and prompts rather than real files."""
    if not path.startswith(("/", "~")):
        return True
    return (
        "/path/" in path
        or "/path/to/" in path
        or path.startswith(".../")
        or path.startswith("[")
    )


def _entry_text(entry: Entry) -> str:
    if entry.message is None:
        return ""
    parts = []
    for block in entry.message.content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, ThinkingBlock):
            parts.append(block.text)
        elif isinstance(block, ToolResultBlock) and isinstance(block.content, str):
            parts.append(block.content)
        else:
            parts.append("")
    return "\n".join(parts)


def find_claude_md_contents(text: str) -> list[tuple[str, str]]:
    """Return (path, stripped content) pairs in the order they appear."""
    return [(m.group(1), (m.group(2) or "").strip()) for m in _CLAUDE_MD_PATTERN.finditer(text)]


def extract_claude_md_files(entries: list[Entry], start_time: str) -> list[ClaudeMdReference]:
    """Collect CLAUDE.md references from a session, first occurrence per path."""
    references: list[ClaudeMdReference] = []
    seen_paths: set[str] = set()

    for entry in entries:
        text = _entry_text(entry)
        if not text:
            continue

        for path, content in find_claude_md_contents(text):
            if not path or is_placeholder_path(path):
                continue
            if path in seen_paths:
                continue
            seen_paths.add(path)

            references.append(ClaudeMdReference(
                path=path,
                loaded_at=entry.timestamp or start_time,
                content=content or None,
                content_hash=compute_hash(content) if content else None,
            ))

    return references
