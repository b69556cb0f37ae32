"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import re
import tempfile
from pathlib import Path

import pytest

from chronicler.settings import SummarySettings
from chronicler.summarization import Summarizer, SummaryStore, Turn

_TAG_REQUEST_RE = re.compile(r"<(minor_summary|merged_summary|daily_digest|major_summary)>")


class ScriptedLLM:
    """Fake collaborator that answers in the requested tag.

    ``replies`` may queue raw replies (strings, or exceptions to raise);
    once the queue is empty every call gets ``<tag>Summary #n</tag>``.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def generate(self, system_prompt, user_content, assistant_prefill=None):
        self.calls.append(
            {"system": system_prompt, "user": user_content, "prefill": assistant_prefill}
        )
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        tag = _TAG_REQUEST_RE.findall(user_content)[-1]
        return f"<{tag}>Summary #{self.call_count}</{tag}>"


def make_turns(count: int, user_floors=(), days=None) -> list[Turn]:
    """Build a transcript of ``count`` collaborator turns.

    Args:
        count: Number of floors
        user_floors: Floors authored by the user instead
        days: Optional list of (calendar_key, first_floor, last_floor)
    """
    turns = []
    for floor in range(1, count + 1):
        key = None
        for day, first, last in days or ():
            if first <= floor <= last:
                key = day
        role = "user" if floor in user_floors else "assistant"
        turns.append(Turn(floor, role, f"Turn {floor} text", key))
    return turns


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir):
    """Create a temporary database file."""
    db_file = temp_dir / "test.db"
    yield str(db_file)


@pytest.fixture
def store():
    return SummaryStore()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def summarizer(llm):
    """Summarizer on the primary channel backed by the scripted collaborator."""
    return Summarizer(primary=llm)


@pytest.fixture
def settings():
    return SummarySettings(enabled=True, minor_threshold=8, major_threshold=25)
