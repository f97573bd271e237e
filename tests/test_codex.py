"""Tests for the Codex CLI transcript parser."""

import json
from pathlib import Path

from agent_replay.detect import AgentType
from agent_replay.timeline import FrameKind, build_timeline
from agent_replay.transcripts import DiagnosticReason, ThinkingBlock, ToolResultBlock, ToolUseBlock
from agent_replay.transcripts.base import ParseContext, parse_file
from agent_replay.transcripts.codex import CodexParser, is_error_content, parse_arguments

FIXTURES = Path(__file__).parent / "fixtures"


def _wrapped(payload, timestamp="2025-02-01T12:00:00.000Z", kind="response_item"):
    return {"timestamp": timestamp, "type": kind, "payload": payload}


class TestParseArguments:
    def test_json_object(self):
        assert parse_arguments('{"command": ["ls"]}') == {"command": ["ls"]}

    def test_invalid_json_kept_raw(self):
        assert parse_arguments("not json") == {"_raw": "not json"}

    def test_non_object_json_kept_raw(self):
        assert parse_arguments("[1, 2]") == {"_raw": "[1, 2]"}

    def test_empty(self):
        assert parse_arguments("") == {}
        assert parse_arguments(None) == {}


class TestIsErrorContent:
    def test_markers(self):
        assert is_error_content("Error: file not found")
        assert is_error_content("Traceback (most recent call last):")
        assert is_error_content("build FAILED: 3 targets")

    def test_exit_code(self):
        assert is_error_content("done\nexit code: 1")
        assert not is_error_content("done\nexit code: 0")

    def test_clean_output(self):
        assert not is_error_content("3 passed")
        assert not is_error_content("")


class TestParseEntry:
    def test_chat_tool_calls(self):
        raw = {
            "id": "m1",
            "created": 1738411200,
            "role": "assistant",
            "model": "gpt-4o",
            "content": "Running it",
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "shell", "arguments": "not json"}},
            ],
        }
        entry = CodexParser().parse_entry(raw)
        assert entry.id == "m1"
        assert entry.model == "gpt-4o"
        assert entry.epoch_ms == 1738411200000
        tool_use = entry.message.content[1]
        assert tool_use == ToolUseBlock(id="call_1", name="shell", input={"_raw": "not json"})

    def test_tool_role_becomes_result(self):
        raw = {
            "id": "m2",
            "created": 1738411201,
            "role": "tool",
            "tool_call_id": "call_1",
            "content": "Error: permission denied",
        }
        entry = CodexParser().parse_entry(raw)
        assert entry.message.role == "assistant"
        result = entry.message.content[0]
        assert isinstance(result, ToolResultBlock)
        assert result.tool_use_id == "call_1"
        assert result.is_error is True

    def test_developer_and_system_skipped(self):
        parser = CodexParser()
        for role in ("developer", "system"):
            raw = _wrapped({"type": "message", "role": role, "content": [{"type": "input_text", "text": "rules"}]})
            assert parser.parse_entry(raw) is None

    def test_event_msg_skipped(self):
        assert CodexParser().parse_entry(_wrapped({"type": "agent_message", "message": "hi"}, kind="event_msg")) is None

    def test_session_meta_updates_context(self, tmp_path):
        context = ParseContext(path=tmp_path / "r.jsonl", agent=AgentType.CODEX)
        raw = _wrapped({"id": "sess-1", "cwd": "/work/repo", "cli_version": "0.39.0"}, kind="session_meta")
        assert CodexParser().parse_entry(raw, context) is None
        assert context.session_id == "sess-1"
        assert context.cwd == "/work/repo"
        assert context.model is None

    def test_missing_timestamp_returns_none(self):
        raw = {"role": "user", "content": "hi"}
        assert CodexParser().parse_entry(raw) is None

    def test_reasoning_summary(self):
        raw = _wrapped({"type": "reasoning", "id": "rs_1", "summary": [
            {"type": "summary_text", "text": "**Plan**"},
            {"type": "summary_text", "text": "Then act."},
        ]})
        entry = CodexParser().parse_entry(raw)
        assert entry.message.content == [ThinkingBlock(text="**Plan**\n\nThen act.")]

    def test_encrypted_only_reasoning_skipped(self):
        raw = _wrapped({"type": "reasoning", "id": "rs_2", "summary": [], "encrypted_content": "gAAA"})
        assert CodexParser().parse_entry(raw) is None

    def test_function_call_output_envelope(self):
        output = json.dumps({"output": "boom", "metadata": {"exit_code": 3}})
        raw = _wrapped({"type": "function_call_output", "call_id": "call_9", "output": output})
        result = CodexParser().parse_entry(raw).message.content[0]
        assert result.content == "boom"
        assert result.exit_code == 3
        assert result.is_error is True

    def test_derived_ids_are_deterministic(self):
        raw = _wrapped({"type": "message", "role": "user", "content": [{"type": "input_text", "text": "hi"}]})
        assert CodexParser().parse_entry(raw).id == CodexParser().parse_entry(dict(raw)).id


class TestParseFile:
    def test_entries(self):
        transcript = parse_file(CodexParser(), FIXTURES / "codex-session.jsonl")
        assert transcript.agent is AgentType.CODEX
        assert [e.id for e in transcript.entries] == [
            "codex-4", "rs_01", "codex-7", "codex-8", "codex-10", "codex-11", "codex-12",
        ]

    def test_session_facts(self):
        transcript = parse_file(CodexParser(), FIXTURES / "codex-session.jsonl")
        assert transcript.session_id == "0194c2f0-aaaa-7bbb-8ccc-123456789abc"
        assert transcript.metadata.cwd == "/home/dev/widgets"
        assert transcript.metadata.project_name == "widgets"
        assert transcript.metadata.agent_version == "gpt-5-codex"
        assert transcript.metadata.claude_version is None

    def test_diagnostics(self):
        transcript = parse_file(CodexParser(), FIXTURES / "codex-session.jsonl")
        reasons = [(d.reason, d.line) for d in transcript.diagnostics]
        assert reasons == [(DiagnosticReason.INVALID_JSON, 9), (DiagnosticReason.ORPHAN_RESULT, 10)]

    def test_ids_stable_across_parses(self):
        first = parse_file(CodexParser(), FIXTURES / "codex-session.jsonl")
        second = parse_file(CodexParser(), FIXTURES / "codex-session.jsonl")
        assert [e.id for e in first.entries] == [e.id for e in second.entries]

    def test_registry_is_per_parse(self, tmp_path):
        # A call made in one file must not satisfy an output in another
        parser = CodexParser()
        parse_file(parser, FIXTURES / "codex-session.jsonl")
        path = tmp_path / "rollout.jsonl"
        path.write_text(json.dumps(_wrapped({
            "type": "function_call_output", "call_id": "call_abc", "output": "late",
        })) + "\n")
        transcript = parse_file(parser, path)
        assert [d.reason for d in transcript.diagnostics] == [DiagnosticReason.ORPHAN_RESULT]


class TestTimeline:
    def test_frames(self):
        parser = CodexParser()
        timeline = build_timeline(parser, parse_file(parser, FIXTURES / "codex-session.jsonl"))
        assert [f.id for f in timeline.frames] == [
            "codex-4-user-text-0",
            "rs_01-thinking-0",
            "codex-7-tool-call_abc",
            "codex-11-tool-call_raw",
            "codex-12-assistant-text-0",
        ]
        assert [f.kind for f in timeline.frames] == [
            FrameKind.USER_MESSAGE,
            FrameKind.THINKING,
            FrameKind.TOOL_EXECUTION,
            FrameKind.TOOL_EXECUTION,
            FrameKind.RESPONSE,
        ]
        assert all(f.agent is AgentType.CODEX for f in timeline.frames)

    def test_shell_call_matched_with_output(self):
        parser = CodexParser()
        timeline = build_timeline(parser, parse_file(parser, FIXTURES / "codex-session.jsonl"))
        shell = timeline.frames[2].body
        assert shell.tool == "shell"
        assert shell.input["command"] == ["bash", "-lc", "pytest -q"]
        assert shell.output.content == "1 failed, 2 passed\nexit code: 1"
        assert shell.output.exit_code == 1
        assert shell.output.is_error is True

    def test_unparseable_arguments_and_missing_output(self):
        parser = CodexParser()
        timeline = build_timeline(parser, parse_file(parser, FIXTURES / "codex-session.jsonl"))
        patch = timeline.frames[3].body
        assert patch.input == {"_raw": "not json"}
        assert patch.output.content == "(No result available)"
        assert patch.output.is_error is False

    def test_dead_air_compressed(self):
        parser = CodexParser()
        timeline = build_timeline(parser, parse_file(parser, FIXTURES / "codex-session.jsonl"))
        shell_frame = timeline.frames[2]
        assert shell_frame.is_compressed is True
        assert shell_frame.original_duration == 7000
        assert shell_frame.duration == 1500
        assert timeline.frames[0].duration == 1000
