"""Text helpers including paragraph chunking."""

from __future__ import annotations

import re
from typing import List

from docvectors.models import Fragment

MIN_FRAGMENT_CHARS = 40

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


def fragment_id(slug: str, index: int) -> str:
    return f"{slug}#para-{index}"


def chunk_paragraphs(text: str, slug: str, *, min_chars: int = MIN_FRAGMENT_CHARS) -> List[Fragment]:
    """Split plain text on blank lines into numbered fragments.

    Paragraphs shorter than `min_chars` after trimming are dropped before
    numbering, so ids stay contiguous.
    """
    if not text:
        return []

    paragraphs = (part.strip() for part in _PARAGRAPH_BREAK.split(text))
    kept = [part for part in paragraphs if len(part) >= min_chars]
    return [
        Fragment(id=fragment_id(slug, index), slug=slug, index=index, text=part)
        for index, part in enumerate(kept)
    ]
