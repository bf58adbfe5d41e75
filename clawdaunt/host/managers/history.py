"""Chat history lookup for gateway sessions.

The gateway delegates CLI-backed sessions to the CLI, which keeps the real
transcript as line-delimited JSON.  Resolution is a two-hop lookup::

    session key --(gateway session index)--> CLI session id
    CLI session id --(first {projects}/*/{id}.jsonl)--> transcript

Only user / assistant turns with non-blank text are returned.  Malformed
transcript lines are skipped.
"""

from __future__ import annotations

import json
from functools import partial
from pathlib import Path
from typing import Any

from anyio import to_thread

from clawdaunt.host.models.api import HistoryMessage


class HistoryLookupError(LookupError):
    """Base class for the distinct history 404s."""

    message = "History not found"

    def __str__(self) -> str:
        return self.message


class SessionIndexMissingError(HistoryLookupError):
    message = "No sessions found"


class SessionMappingMissingError(HistoryLookupError):
    message = "Session not found or no CLI session ID"


class TranscriptMissingError(HistoryLookupError):
    message = "CLI session file not found"


async def read_session_history(session_key: str, *, index_path: Path, projects_dir: Path) -> list[HistoryMessage]:
    """Return the user/assistant turns of *session_key* (file I/O off the event loop)."""
    return await to_thread.run_sync(partial(_read_history, session_key, index_path, projects_dir))


def _read_history(session_key: str, index_path: Path, projects_dir: Path) -> list[HistoryMessage]:
    if not index_path.exists():
        raise SessionIndexMissingError

    index = json.loads(index_path.read_text(encoding="utf-8"))
    entry = index.get(session_key) if isinstance(index, dict) else None
    cli_session_id = entry.get("claudeCliSessionId") if isinstance(entry, dict) else None
    if not cli_session_id:
        raise SessionMappingMissingError

    transcript = find_transcript(projects_dir, str(cli_session_id))
    if transcript is None:
        raise TranscriptMissingError

    return parse_transcript(transcript.read_text(encoding="utf-8").splitlines())


def find_transcript(projects_dir: Path, cli_session_id: str) -> Path | None:
    if not projects_dir.is_dir():
        return None
    for project in sorted(projects_dir.iterdir()):
        candidate = project / f"{cli_session_id}.jsonl"
        if candidate.is_file():
            return candidate
    return None


def parse_transcript(lines: list[str]) -> list[HistoryMessage]:
    messages: list[HistoryMessage] = []
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or entry.get("type") not in ("user", "assistant"):
            continue
        message = entry.get("message")
        text = _message_text(message.get("content") if isinstance(message, dict) else None)
        if text.strip():
            messages.append(HistoryMessage(role=entry["type"], content=text))
    return messages


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""
