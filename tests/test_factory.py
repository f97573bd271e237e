"""Tests for parser dispatch and the one-call helpers."""

import logging
import shutil
from pathlib import Path

import pytest

from agent_replay.config import Config
from agent_replay.detect import AgentType
from agent_replay.transcripts import (
    available_agents,
    detect_agent_from_transcript,
    get_parser,
    has_parser,
    load_timeline,
    parse_session,
)
from agent_replay.transcripts.base import AgentParser
from agent_replay.transcripts.claude import ClaudeParser
from agent_replay.transcripts.codex import CodexParser
from agent_replay.transcripts.gemini import GeminiParser

FIXTURES = Path(__file__).parent / "fixtures"


class TestGetParser:
    def test_each_agent(self):
        assert isinstance(get_parser(AgentType.CLAUDE), ClaudeParser)
        assert isinstance(get_parser(AgentType.CODEX), CodexParser)
        assert isinstance(get_parser(AgentType.GEMINI), GeminiParser)

    def test_accepts_strings(self):
        assert isinstance(get_parser("codex"), CodexParser)

    def test_parsers_satisfy_protocol(self):
        for agent in available_agents():
            assert isinstance(get_parser(agent), AgentParser)

    def test_unknown_falls_back_to_claude(self, caplog):
        with caplog.at_level(logging.WARNING):
            parser = get_parser(AgentType.UNKNOWN)
        assert isinstance(parser, ClaudeParser)
        assert "falling back to Claude" in caplog.text

    def test_invalid_name_raises(self):
        with pytest.raises(ValueError):
            get_parser("cursor")

    def test_same_instance_each_call(self):
        assert get_parser(AgentType.CLAUDE) is get_parser(AgentType.CLAUDE)


class TestRegistry:
    def test_available_agents(self):
        assert available_agents() == [AgentType.CLAUDE, AgentType.CODEX, AgentType.GEMINI]

    def test_has_parser(self):
        assert has_parser(AgentType.GEMINI)
        assert has_parser(AgentType.UNKNOWN)


class TestParseSession:
    def test_detects_from_content(self):
        assert parse_session(FIXTURES / "claude-session.jsonl").agent is AgentType.CLAUDE
        assert parse_session(FIXTURES / "codex-session.jsonl").agent is AgentType.CODEX
        assert parse_session(FIXTURES / "gemini-session.json").agent is AgentType.GEMINI

    def test_declared_agent_wins(self, tmp_path):
        path = tmp_path / "session.jsonl"
        shutil.copy(FIXTURES / "claude-session.jsonl", path)
        transcript = parse_session(path, AgentType.CODEX)
        assert transcript.agent is AgentType.CODEX

    def test_detects_from_path(self, tmp_path):
        sessions = tmp_path / ".codex" / "sessions" / "2025" / "02" / "01"
        sessions.mkdir(parents=True)
        path = sessions / "rollout.jsonl"
        shutil.copy(FIXTURES / "codex-session.jsonl", path)
        assert parse_session(path).agent is AgentType.CODEX

    def test_detects_from_configured_dir(self, tmp_path):
        config = Config(env_file=tmp_path / "env", gemini_home=tmp_path / "gem")
        chats = tmp_path / "gem" / "tmp" / "3f2a1b0c9d8e" / "chats"
        chats.mkdir(parents=True)
        path = chats / "session-1.json"
        shutil.copy(FIXTURES / "gemini-session.json", path)
        transcript = parse_session(path, config=config)
        assert transcript.agent is AgentType.GEMINI
        assert transcript.metadata.project_name == "Gemini Project (3f2a1b0c)"

    def test_unknown_content_uses_claude(self, tmp_path):
        path = tmp_path / "mystery.jsonl"
        path.write_text('{"hello": "world"}\n')
        transcript = parse_session(path)
        assert transcript.agent is AgentType.CLAUDE
        assert transcript.entries == []

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            parse_session(tmp_path / "nope.jsonl", AgentType.CLAUDE)


class TestDetectAgentFromTranscript:
    def test_each_fixture(self):
        for name, expected in [
            ("claude-session.jsonl", AgentType.CLAUDE),
            ("codex-session.jsonl", AgentType.CODEX),
            ("gemini-session.json", AgentType.GEMINI),
        ]:
            transcript = parse_session(FIXTURES / name)
            assert detect_agent_from_transcript(transcript) is expected, name


class TestLoadTimeline:
    def test_one_call(self):
        timeline = load_timeline(FIXTURES / "gemini-session.json")
        assert timeline.agent is AgentType.GEMINI
        assert timeline.total_frames == 7
        assert timeline.project == "Gemini Project (3f2a1b0c)"
