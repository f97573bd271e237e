"""Agent Replay: turn Claude Code, Codex CLI and Gemini CLI session logs into playback timelines."""

__version__ = "0.1.0"
