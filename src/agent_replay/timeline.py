"""Turn parsed transcripts into playback frames with synthesized durations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .claudemd import ClaudeMdReference, extract_claude_md_files
from .detect import AgentType
from .transcripts import ParsedTranscript, parse_timestamp, to_epoch_ms

if TYPE_CHECKING:
    from .config import Config
    from .transcripts.base import AgentParser

# Dead air compression
DEAD_AIR_THRESHOLD_MS = 5000  # compress gaps longer than this
COMPRESSED_DURATION_MS = 1500  # ...down to this
LONG_GAP_MS = 30000


class FrameKind(Enum):
    USER_MESSAGE = "user_message"
    THINKING = "claude_thinking"
    RESPONSE = "claude_response"
    TOOL_EXECUTION = "tool_execution"


@dataclass
class UserMessage:
    text: str

    def to_dict(self) -> dict:
        return {"text": self.text}


@dataclass
class Thinking:
    text: str
    signature: str | None = None

    def to_dict(self) -> dict:
        data = {"text": self.text}
        if self.signature is not None:
            data["signature"] = self.signature
        return data


@dataclass
class Response:
    text: str

    def to_dict(self) -> dict:
        return {"text": self.text}


@dataclass
class ToolOutput:
    content: str
    is_error: bool = False
    exit_code: int | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        return data


@dataclass
class FileDiff:
    file_path: str
    new_content: str
    language: str
    old_content: str | None = None

    def to_dict(self) -> dict:
        data = {"filePath": self.file_path, "newContent": self.new_content, "language": self.language}
        if self.old_content is not None:
            data["oldContent"] = self.old_content
        return data


@dataclass
class ToolExecution:
    tool: str  # "Bash", "Read", "shell", "run_shell_command", ...
    input: dict[str, Any]
    output: ToolOutput
    file_diff: FileDiff | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"tool": self.tool, "input": self.input, "output": self.output.to_dict()}
        if self.file_diff is not None:
            data["fileDiff"] = self.file_diff.to_dict()
        return data


FrameBody = Union[UserMessage, Thinking, Response, ToolExecution]

# Wire key for each frame kind, as the playback UI reads them.
_BODY_KEYS = {
    FrameKind.USER_MESSAGE: "userMessage",
    FrameKind.THINKING: "thinking",
    FrameKind.RESPONSE: "claudeResponse",
    FrameKind.TOOL_EXECUTION: "toolExecution",
}


@dataclass
class FrameContext:
    cwd: str = ""
    files_read: list[str] | None = None
    files_modified: list[str] | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"cwd": self.cwd}
        if self.files_read is not None:
            data["filesRead"] = self.files_read
        if self.files_modified is not None:
            data["filesModified"] = self.files_modified
        return data


@dataclass
class Frame:
    """One display unit of a playback timeline."""

    id: str
    kind: FrameKind
    timestamp: int  # epoch ms
    agent: AgentType
    body: FrameBody
    context: FrameContext = field(default_factory=FrameContext)
    duration: float | None = None  # ms until the next frame
    original_duration: int | None = None  # real gap, when compressed
    is_compressed: bool = False

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "timestamp": self.timestamp,
            "agent": self.agent.value,
            _BODY_KEYS[self.kind]: self.body.to_dict(),
            "context": self.context.to_dict(),
        }
        if self.duration is not None:
            data["duration"] = self.duration
        if self.original_duration is not None:
            data["originalDuration"] = self.original_duration
        if self.is_compressed:
            data["isCompressed"] = True
        return data


@dataclass
class TimelineMetadata:
    cwd: str = ""
    agent_version: str | None = None
    claude_version: str | None = None
    git_branch: str | None = None
    claude_md_files: list[ClaudeMdReference] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"cwd": self.cwd}
        if self.agent_version is not None:
            data["agentVersion"] = self.agent_version
        if self.claude_version is not None:
            data["claudeVersion"] = self.claude_version
        if self.git_branch is not None:
            data["gitBranch"] = self.git_branch
        data["claudeMdFiles"] = [ref.to_dict() for ref in self.claude_md_files]
        return data


@dataclass
class SessionTimeline:
    """Complete playback data for one session."""

    session_id: str
    slug: str
    project: str
    agent: AgentType
    started_at: int
    completed_at: int | None
    frames: list[Frame]
    total_frames: int
    metadata: TimelineMetadata

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "sessionId": self.session_id,
            "slug": self.slug,
            "project": self.project,
            "agent": self.agent.value,
            "startedAt": self.started_at,
            "frames": [frame.to_dict() for frame in self.frames],
            "totalFrames": self.total_frames,
            "metadata": self.metadata.to_dict(),
        }
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data


# --- Durations ---


def default_duration(frame: Frame) -> float:
    """Playback duration for a frame with no usable gap to its successor."""
    body = frame.body
    if isinstance(body, UserMessage):
        return 3000 if len(body.text) > 200 else 2000
    if isinstance(body, Thinking):
        return 1000
    if isinstance(body, Response):
        return min(5000, 3000 + len(body.text) / 100)
    if isinstance(body, ToolExecution):
        return 2000 if body.tool == "Bash" else 1000
    return 2000


def calculate_frame_durations(
    frames: list[Frame],
    dead_air_threshold: int = DEAD_AIR_THRESHOLD_MS,
    compressed_duration: int = COMPRESSED_DURATION_MS,
    long_gap: int = LONG_GAP_MS,
) -> None:
    """Assign each frame a duration in place. Never reorders or drops frames."""
    for i, frame in enumerate(frames):
        if i + 1 >= len(frames):
            frame.duration = default_duration(frame)
            continue

        gap = frames[i + 1].timestamp - frame.timestamp
        if gap > dead_air_threshold:
            frame.original_duration = gap
            frame.duration = compressed_duration
            frame.is_compressed = True
        elif gap < long_gap:
            frame.duration = gap
        else:
            # Only reachable when the dead-air threshold is raised above long_gap
            frame.original_duration = gap
            frame.duration = default_duration(frame)
            frame.is_compressed = True


# --- Timeline ---


def _epoch_ms(value: str | None) -> int | None:
    moment = parse_timestamp(value)
    return to_epoch_ms(moment) if moment is not None else None


def build_timeline(parser: AgentParser, transcript: ParsedTranscript, config: Config | None = None) -> SessionTimeline:
    """Build a playable timeline from a parsed transcript.

    Args:
        parser: The parser that produced the transcript; supplies the
            agent-specific result indexing and frame conversion.
        transcript: Output of parse_file.
        config: Timing knobs. Module defaults apply if None.

    Returns:
        SessionTimeline with frames in entry order, then block order.
    """
    index = parser.collect_tool_results(transcript.entries)

    frames: list[Frame] = []
    for entry in transcript.entries:
        frames.extend(parser.extract_frames_from_entry(entry, index))

    if config is not None:
        calculate_frame_durations(
            frames,
            dead_air_threshold=config.dead_air_threshold_ms,
            compressed_duration=config.compressed_duration_ms,
        )
    else:
        calculate_frame_durations(frames)

    metadata = transcript.metadata
    return SessionTimeline(
        session_id=transcript.session_id,
        slug=metadata.slug or "unknown-session",
        project=metadata.project_name or "Unknown Project",
        agent=parser.agent,
        started_at=_epoch_ms(metadata.start_time) or 0,
        completed_at=_epoch_ms(metadata.end_time),
        frames=frames,
        total_frames=len(frames),
        metadata=TimelineMetadata(
            cwd=metadata.cwd or "",
            agent_version=metadata.agent_version,
            claude_version=metadata.claude_version,
            git_branch=metadata.git_branch,
            claude_md_files=extract_claude_md_files(transcript.entries, metadata.start_time),
        ),
    )


def session_signals(timeline: SessionTimeline) -> dict:
    """Project/file-overlap signals the work-unit correlator consumes."""
    files_read: list[str] = []
    files_modified: list[str] = []
    first_user_message = None

    for frame in timeline.frames:
        for path in frame.context.files_read or []:
            if path not in files_read:
                files_read.append(path)
        for path in frame.context.files_modified or []:
            if path not in files_modified:
                files_modified.append(path)
        if first_user_message is None and isinstance(frame.body, UserMessage):
            first_user_message = frame.body.text

    return {
        "sessionId": timeline.session_id,
        "agent": timeline.agent.value,
        "projectPath": timeline.project,
        "cwd": timeline.metadata.cwd,
        "filesRead": files_read,
        "filesModified": files_modified,
        "startedAt": timeline.started_at,
        "completedAt": timeline.completed_at,
        "frameCount": timeline.total_frames,
        "firstUserMessage": first_user_message,
    }
