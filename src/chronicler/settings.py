"""Configuration and fixed prompt texts for the summarization engine.

Non-secret, stable texts live here as module constants. Runtime options are
read from the environment by ``SummarySettings.from_env()``; API keys are read
by the individual text generators and must stay in ``.env``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


# --------------------- Prompt texts (summarization) ---------------------

SUMMARY_SYSTEM_PROMPT: str = (
    "You are a story summarization assistant. You read passages of an ongoing "
    "interactive story, or summaries of earlier passages, and condense them into "
    "short, faithful summaries.\n"
    "Always wrap the summary in exactly the XML tag the user asks for "
    "(for example <minor_summary> or <daily_digest>).\n"
    "Never write anything outside that tag: no preface, no explanation, no notes. "
    "Focus on plot progression, key turning points and changes in relationships."
)

# Sent to the primary channel only. Replies may open with the tail of a
# reasoning block whose opening tag is in the prefill.
ASSISTANT_PREFILL: str = (
    "<think>\n"
    "Planning finished.\n"
    "</think>\n\n"
    "Understood. I will reason briefly inside <thinking> first and then write the summary:"
)

MINOR_SUMMARY_PROMPT: str = """[Task: summarize this story turn]
Read the passage below and write a detailed summary of what happens in it.

Requirements:
1. Keep key plot developments, character actions and the gist of dialogue
2. Keep important emotional shifts and relationship progress
3. Aim for 100-200 words
4. Output the summary only, with no preface or explanation
5. Use this layout:
    Date|in-story date and time
    Title|a title of about ten words
    Location|where the scene takes place
    Characters|who is present
    Description|what happened
    Relationships|how relationships changed
    Key facts|anything that must be remembered

Passage (floor {floor}):
{content}

Answer strictly in this format:
<minor_summary>your summary</minor_summary>"""

MINOR_MERGE_PROMPT: str = """[Task: summarize consecutive story turns]
The passages below are consecutive turns of the story, floors {first_floor} to {last_floor}.
Merge them into one coherent summary.

Requirements:
1. Describe the core development across these turns
2. Keep turning points and important information
3. Aim for at most 300 words
4. Output the summary only, with no preface or explanation

Passages:
{content}

Answer strictly in this format:
<merged_summary>your summary</merged_summary>"""

DIGEST_PROMPT: str = """[Task: write the digest of one story day]
Below are the turn summaries of the in-story day {calendar_key}, in order.
Write a single digest of that day.

Requirements:
1. Keep only the main storyline and decisive moments
2. Merge repeated information
3. Aim for at most 300 words
4. Output the digest only, with no preface or explanation

Turn summaries:
{content}

Answer strictly in this format:
<daily_digest>your digest</daily_digest>"""

MERGE_LEGACY_PROMPT: str = """[Task: merge turn summaries]
Merge the following turn summaries (floors {first_floor} to {last_floor}) into one condensed version.

Requirements:
1. Keep the core plot line
2. Merge repeated information
3. Drop minor details
4. Aim for at most 300 words
5. Keep the original layout

Summaries to merge:
{content}

Answer strictly in this format:
<major_summary>your merged summary</major_summary>"""


# --------------------- Runtime options ---------------------

_TRUTHY = {"1", "true", "yes", "on"}


class TruncatePolicy(str, Enum):
    """What rollback does with a record that straddles the rollback floor."""

    KEEP = "keep"
    DROP = "drop"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class SummarySettings:
    """Options recognized by the history compression engine.

    ``enabled`` is the master switch; when it is off the engine passes raw
    turns through unchanged. ``use_assistant_channel`` routes summary requests
    to the dedicated summarization collaborator instead of the primary one.
    """

    enabled: bool = False
    minor_threshold: int = 8
    major_threshold: int = 25
    use_assistant_channel: bool = False
    batch_size: int = 0
    truncate_policy: TruncatePolicy = TruncatePolicy.KEEP
    primary_api: str = "anthropic"
    primary_model: str = "claude-haiku-4-5"
    assistant_api: str = "openrouter"
    assistant_model: str = "meta-llama/llama-3.3-70b-instruct"
    db_path: str | None = None
    session_id: str = "default"

    def __post_init__(self) -> None:
        if self.minor_threshold < 0:
            raise ValueError("minor_threshold must not be negative")
        if self.major_threshold < self.minor_threshold:
            raise ValueError(
                f"major_threshold ({self.major_threshold}) must be >= "
                f"minor_threshold ({self.minor_threshold})"
            )
        if self.batch_size < 0:
            raise ValueError("batch_size must not be negative")
        if not isinstance(self.truncate_policy, TruncatePolicy):
            self.truncate_policy = TruncatePolicy(self.truncate_policy)

    @classmethod
    def from_env(cls) -> SummarySettings:
        """Build settings from ``SUMMARY_*`` environment variables."""
        policy = os.getenv("SUMMARY_TRUNCATE_POLICY", TruncatePolicy.KEEP.value).strip().lower()
        try:
            truncate_policy = TruncatePolicy(policy)
        except ValueError:
            raise ValueError(f"SUMMARY_TRUNCATE_POLICY must be 'keep' or 'drop', got {policy!r}") from None

        db_path = os.getenv("SUMMARY_DB_PATH", "").strip()
        return cls(
            enabled=_env_bool("SUMMARY_ENABLED"),
            minor_threshold=_env_int("SUMMARY_MINOR_THRESHOLD", 8),
            major_threshold=_env_int("SUMMARY_MAJOR_THRESHOLD", 25),
            use_assistant_channel=_env_bool("SUMMARY_USE_ASSISTANT_CHANNEL"),
            batch_size=_env_int("SUMMARY_BATCH_SIZE", 0),
            truncate_policy=truncate_policy,
            primary_api=os.getenv("SUMMARY_PRIMARY_API", "anthropic").strip(),
            primary_model=os.getenv("SUMMARY_PRIMARY_MODEL", "claude-haiku-4-5").strip(),
            assistant_api=os.getenv("SUMMARY_ASSISTANT_API", "openrouter").strip(),
            assistant_model=os.getenv(
                "SUMMARY_ASSISTANT_MODEL", "meta-llama/llama-3.3-70b-instruct"
            ).strip(),
            db_path=str(Path(db_path).expanduser()) if db_path else None,
            session_id=os.getenv("SUMMARY_SESSION_ID", "default").strip() or "default",
        )
