"""Remove reasoning/scratchpad sections from a collaborator reply.

Reasoning shows up in three shapes, handled in this order:

1. closed blocks: ``<think>...</think>`` (same alias on both tags)
2. an opening tag that is never closed: everything from it to the end
3. an orphan closing tag with no opening tag before it: everything up to and
   including the last such tag (the reply started inside a reasoning block,
   typically because of an assistant prefill)

The reply is tokenized once into reasoning tags and scanned left to right.
"""

from __future__ import annotations

import re
from typing import NamedTuple

REASONING_TAGS = ("think", "thinking", "thought", "extrathink", "reasoning")

_TAG_RE = re.compile(
    r"<\s*(?P<close>/)?\s*(?P<name>" + "|".join(REASONING_TAGS) + r")\s*>",
    re.IGNORECASE,
)


class _Tag(NamedTuple):
    name: str
    closing: bool
    start: int
    end: int


def _tokenize(text: str) -> list[_Tag]:
    return [
        _Tag(m.group("name").lower(), bool(m.group("close")), m.start(), m.end())
        for m in _TAG_RE.finditer(text)
    ]


def strip_reasoning(text: str) -> str:
    """Return ``text`` with every reasoning section removed, stripped."""
    if not text:
        return ""

    closed_spans: list[tuple[int, int]] = []
    open_tag: _Tag | None = None
    orphan_end = 0

    for tag in _tokenize(text):
        if open_tag is None:
            if tag.closing:
                orphan_end = tag.end
            else:
                open_tag = tag
        elif tag.closing and tag.name == open_tag.name:
            closed_spans.append((open_tag.start, tag.end))
            open_tag = None
        # Any other tag inside an open block is part of that block.

    cut_end = open_tag.start if open_tag is not None else len(text)

    pieces = []
    position = orphan_end
    for start, end in closed_spans:
        if end <= position:
            continue
        pieces.append(text[position:start])
        position = end
    pieces.append(text[position:cut_end])

    return "".join(pieces).strip()
