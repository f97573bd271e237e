"""CLI entry points: replay detect, replay parse, replay claudemd, replay diagnostics, replay agents."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from .config import Config

AGENT_CHOICES = ["claude", "codex", "gemini"]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log skipped records and dropped blocks to stderr")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Agent Replay: playback timelines for Claude Code, Codex CLI & Gemini CLI sessions."""
    ctx.ensure_object(dict)
    Config().load_env_file()  # Seed os.environ before constructing final config
    config = Config()
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj["config"] = config


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def detect(ctx: click.Context, path: Path) -> None:
    """Detect which agent wrote a session file."""
    from .detect import agent_info, read_first_record

    config = ctx.obj["config"]
    info = agent_info(path, read_first_record(path), config)
    click.echo(f"Agent: {info.type.value}")
    if info.version:
        click.echo(f"Version: {info.version}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--agent", type=click.Choice(AGENT_CHOICES), help="Skip detection and use this agent's parser")
@click.option("--json", "as_json", is_flag=True, help="Output the full timeline as JSON")
@click.option("--frames", "-n", "max_frames", type=int, default=0, help="Max frames to list (0 = all)")
@click.pass_context
def parse(ctx: click.Context, path: Path, agent: str | None, as_json: bool, max_frames: int) -> None:
    """Parse a session file into a playback timeline."""
    from .detect import AgentType
    from .transcripts import load_timeline

    config = ctx.obj["config"]
    try:
        timeline = load_timeline(path, AgentType(agent) if agent else None, config)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps(timeline.to_dict(), indent=2))
        return

    click.echo(f"Session: {timeline.session_id}")
    click.echo(f"Agent:   {timeline.agent.value}")
    click.echo(f"Project: {timeline.project}")
    if timeline.metadata.cwd:
        click.echo(f"Cwd:     {timeline.metadata.cwd}")
    click.echo(f"Frames:  {timeline.total_frames}")

    shown = timeline.frames[:max_frames or None]
    for i, frame in enumerate(shown, start=1):
        marker = "*" if frame.is_compressed else " "
        click.echo(f"{i:>4} {_format_ms(frame.duration)}{marker} {_summarize_frame(frame)}")
    if len(shown) < len(timeline.frames):
        click.echo(f"  ... ({len(timeline.frames) - len(shown)} more frames)")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output references as JSON")
@click.pass_context
def claudemd(ctx: click.Context, path: Path, as_json: bool) -> None:
    """List CLAUDE.md files that were loaded into a session."""
    from .claudemd import extract_claude_md_files
    from .transcripts import parse_session

    config = ctx.obj["config"]
    try:
        transcript = parse_session(path, config=config)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    references = extract_claude_md_files(transcript.entries, transcript.metadata.start_time)

    if as_json:
        click.echo(json.dumps([ref.to_dict() for ref in references], indent=2))
    elif references:
        for ref in references:
            digest = ref.content_hash[:12] if ref.content_hash else "(empty)"
            click.echo(f"{ref.path}  {digest}  {ref.loaded_at}")
    else:
        click.echo("No CLAUDE.md files found.")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def diagnostics(ctx: click.Context, path: Path) -> None:
    """Show records that were skipped while parsing a session file."""
    from .transcripts import parse_session

    config = ctx.obj["config"]
    try:
        transcript = parse_session(path, config=config)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"{len(transcript.entries)} entries parsed, {len(transcript.diagnostics)} skipped")
    for diagnostic in transcript.diagnostics:
        where = f"line {diagnostic.line}" if diagnostic.line is not None else "file"
        click.echo(f"  [{diagnostic.reason.value}] {where}: {diagnostic.message}")


@cli.command()
@click.pass_context
def agents(ctx: click.Context) -> None:
    """List supported agents and where their sessions live."""
    from .transcripts import available_agents

    config = ctx.obj["config"]
    dirs = config.agent_session_dirs()
    for agent in available_agents():
        session_dir = dirs.get(agent.value)
        status = "found" if session_dir and session_dir.exists() else "missing"
        click.echo(f"{agent.value:<8} {session_dir} ({status})")


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the settings env file for playback timing and agent homes."""
    config = ctx.obj["config"]
    if config.ensure_env_file():
        click.echo(f"Created {config.env_file}")
        click.echo("  Uncomment REPLAY_DEAD_AIR_MS / REPLAY_COMPRESSED_MS to tune playback")
    else:
        click.echo(f"Env file: {config.env_file} (already exists)")


def _format_ms(duration: float | None) -> str:
    if duration is None:
        return "      "
    return f"{duration / 1000:5.1f}s"


def _summarize_frame(frame) -> str:
    """Create a one-line summary of a frame."""
    from .timeline import Response, Thinking, ToolExecution, UserMessage

    body = frame.body
    if isinstance(body, UserMessage):
        return f"user: {_first_line(body.text)}"
    if isinstance(body, Thinking):
        return f"thinking: {_first_line(body.text)}"
    if isinstance(body, Response):
        return f"assistant: {_first_line(body.text)}"
    if isinstance(body, ToolExecution):
        status = " (error)" if body.output.is_error else ""
        return _summarize_tool_use(body.tool, body.input) + status
    return frame.kind.value


def _first_line(text: str, limit: int = 100) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line if len(line) <= limit else line[:limit] + "..."


def _summarize_tool_use(tool: str, inp: dict) -> str:
    """Create a one-line summary of a tool call."""
    if tool in ("Bash", "shell", "run_shell_command"):
        cmd = inp.get("command", "")
        if isinstance(cmd, list):
            cmd = " ".join(str(part) for part in cmd)
        desc = inp.get("description", "")
        return f"[{tool}: {desc or str(cmd)[:100]}]"
    elif tool in ("Read", "read_file"):
        return f"[{tool}: {inp.get('file_path') or inp.get('absolute_path') or '?'}]"
    elif tool in ("Write", "Edit", "write_file", "replace"):
        return f"[{tool}: {inp.get('file_path', '?')}]"
    elif tool in ("Glob", "Grep", "glob", "search_file_content"):
        return f"[{tool}: {inp.get('pattern', '?')}]"
    elif tool in ("WebSearch", "google_web_search"):
        return f"[{tool}: {inp.get('query', '?')}]"
    elif tool in ("WebFetch", "web_fetch"):
        return f"[{tool}: {inp.get('url') or inp.get('prompt') or '?'}]"
    elif tool == "Task":
        return f"[Task: {inp.get('description', '?')}]"
    else:
        return f"[{tool}]"
