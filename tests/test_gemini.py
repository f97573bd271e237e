"""Tests for the Gemini CLI session parser."""

import json
from pathlib import Path

import pytest

from agent_replay.detect import AgentType
from agent_replay.timeline import FrameKind, build_timeline
from agent_replay.transcripts import DiagnosticReason, EntryKind, TextBlock, ThinkingBlock
from agent_replay.transcripts.base import ParseContext, parse_file
from agent_replay.transcripts.gemini import GeminiParser, format_thoughts

FIXTURES = Path(__file__).parent / "fixtures"


def _timeline():
    parser = GeminiParser()
    return build_timeline(parser, parse_file(parser, FIXTURES / "gemini-session.json"))


class TestParseEntry:
    def test_user_message(self):
        entry = GeminiParser().parse_entry({
            "id": "g-1", "timestamp": "2025-03-10T08:00:01.000Z", "type": "user", "content": "hi",
        })
        assert entry.kind is EntryKind.USER
        assert entry.message.content == [TextBlock(text="hi")]

    def test_model_type_is_assistant(self):
        entry = GeminiParser().parse_entry({
            "id": "g-2", "timestamp": "2025-03-10T08:00:01.000Z", "type": "model", "content": "ok",
        })
        assert entry.kind is EntryKind.ASSISTANT
        assert entry.message.role == "assistant"

    def test_non_conversation_types_skipped(self):
        parser = GeminiParser()
        for kind in ("system", "info", "error"):
            raw = {"id": "x", "timestamp": "2025-03-10T08:00:01.000Z", "type": kind, "content": "notice"}
            assert parser.parse_entry(raw) is None

    def test_empty_message_skipped(self):
        raw = {"id": "x", "timestamp": "2025-03-10T08:00:01.000Z", "type": "gemini", "content": ""}
        assert GeminiParser().parse_entry(raw) is None

    def test_empty_message_reported(self, tmp_path):
        context = ParseContext(path=tmp_path / "session.json", agent=AgentType.GEMINI, line=3)
        raw = {"id": "x", "timestamp": "2025-03-10T08:00:01.000Z", "type": "gemini", "content": "", "toolCalls": []}
        assert GeminiParser().parse_entry(raw, context) is None
        assert [(d.reason, d.line) for d in context.diagnostics] == [(DiagnosticReason.UNKNOWN_SHAPE, 3)]

    def test_thinking_precedes_text(self):
        entry = GeminiParser().parse_entry({
            "id": "g-3",
            "timestamp": "2025-03-10T08:00:01.000Z",
            "type": "gemini",
            "content": "answer",
            "thoughts": [{"subject": "Plan", "description": "Look first."}],
        })
        assert entry.message.content == [ThinkingBlock(text="**Plan**\n\nLook first."), TextBlock(text="answer")]

    def test_content_parts(self):
        entry = GeminiParser().parse_entry({
            "id": "g-4", "timestamp": "2025-03-10T08:00:01.000Z", "type": "gemini",
            "content": [{"text": "one"}, {"text": "two"}],
        })
        assert entry.message.content == [TextBlock(text="one\ntwo")]


class TestFormatThoughts:
    def test_joins_with_separator(self):
        thoughts = [
            {"subject": "A", "description": "first"},
            {"subject": "B", "description": "second"},
        ]
        assert format_thoughts(thoughts) == "**A**\n\nfirst\n\n---\n\n**B**\n\nsecond"

    def test_not_a_list(self):
        assert format_thoughts(None) == ""


class TestParseFile:
    def test_entries_and_diagnostics(self):
        transcript = parse_file(GeminiParser(), FIXTURES / "gemini-session.json")
        assert transcript.agent is AgentType.GEMINI
        assert [e.id for e in transcript.entries] == ["g-1", "g-2", "g-4", "gemini-5"]
        assert [(d.reason, d.line) for d in transcript.diagnostics] == [(DiagnosticReason.MISSING_FIELD, 6)]

    def test_session_facts(self):
        transcript = parse_file(GeminiParser(), FIXTURES / "gemini-session.json")
        assert transcript.session_id == "9a8b7c6d-1111-2222-3333-444455556666"
        assert transcript.metadata.project_name == "Gemini Project (3f2a1b0c)"
        assert transcript.metadata.agent_version == "gemini-2.5-pro"

    def test_project_hash_from_path(self, tmp_path):
        chats = tmp_path / ".gemini" / "tmp" / "abcdef0123456789" / "chats"
        chats.mkdir(parents=True)
        path = chats / "session-1.json"
        path.write_text(json.dumps({"sessionId": "s", "projectHash": "ffffffffffff", "messages": []}))
        assert parse_file(GeminiParser(), path).metadata.project_name == "Gemini Project (abcdef01)"

    def test_empty_session_uses_document_times(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({
            "sessionId": "s",
            "projectHash": "abc",
            "startTime": "2025-03-10T08:00:00.000Z",
            "lastUpdated": "2025-03-10T09:00:00.000Z",
            "messages": [],
        }))
        transcript = parse_file(GeminiParser(), path)
        assert transcript.entries == []
        assert transcript.session_id == "s"
        assert transcript.metadata.start_time == "2025-03-10T08:00:00.000Z"
        assert transcript.metadata.end_time == "2025-03-10T09:00:00.000Z"

    def test_malformed_document_raises(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            parse_file(GeminiParser(), path)

    def test_document_without_messages_raises(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"sessionId": "s"}))
        with pytest.raises(ValueError):
            parse_file(GeminiParser(), path)


class TestTimeline:
    def test_frames(self):
        timeline = _timeline()
        assert [f.id for f in timeline.frames] == [
            "g-1-user-text-0",
            "g-2-thinking-0",
            "g-2-assistant-text-0",
            "g-2-tool-read_file-1",
            "g-4-tool-replace-1",
            "g-4-tool-run_shell_command-1",
            "gemini-5-assistant-text-0",
        ]
        assert timeline.frames[1].kind is FrameKind.THINKING
        assert timeline.frames[1].body.text == (
            "**Planning**\n\nRead before editing.\n\n---\n\n**Scope**\n\nOnly the version field."
        )

    def test_inline_results(self):
        read = _timeline().frames[3]
        assert read.body.output.content == "version: 1.2.0\n"
        assert read.body.output.is_error is False
        assert read.context.files_read == ["/home/dev/site/config.yaml"]

    def test_replace_diff(self):
        replace = _timeline().frames[4]
        assert replace.body.file_diff.old_content == "version: 1.2.0"
        assert replace.body.file_diff.new_content == "version: 1.3.0"
        assert replace.body.file_diff.language == "yaml"
        assert replace.context.files_modified == ["/home/dev/site/config.yaml"]

    def test_shell_error_and_exit_code(self):
        shell = _timeline().frames[5]
        assert shell.body.output.content == "Command failed. Exit Code: 2"
        assert shell.body.output.is_error is True
        assert shell.body.output.exit_code == 2
        assert shell.is_compressed is True
        assert shell.original_duration == 24000
