"""Markdown loading, front matter parsing and plain-text conversion.

Front matter is a YAML mapping fenced by `---` lines at the very top of the
file. The body is rendered with Python-Markdown and flattened back to prose
with BeautifulSoup, one paragraph per block element.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Tuple

import markdown
import yaml
from bs4 import BeautifulSoup

from docvectors.errors import MalformedDocumentError, SourceAccessError
from docvectors.models import Document
from docvectors.utils.files import mtime_millis

LOGGER = logging.getLogger(__name__)

_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_EMPTY_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n---[ \t]*(?:\r?\n|\Z)")
_MARKDOWN_SUFFIX = re.compile(r"\.mdx?$", re.IGNORECASE)
_INDEX_SEGMENT = re.compile(r"/index$")

_BLOCK_TAGS = (
    "p",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "li",
    "blockquote",
    "dt",
    "dd",
)


def parse_front_matter(raw: str, *, path: Path | None = None) -> Tuple[str, Dict[str, Any]]:
    """Split `raw` into `(body, fields)`.

    A document without a front matter fence has an empty field mapping.
    """
    text = raw.lstrip("\ufeff")
    empty = _EMPTY_FRONT_MATTER.match(text)
    if empty:
        return text[empty.end():], {}

    match = _FRONT_MATTER.match(text)
    if not match:
        return text, {}

    try:
        fields = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise MalformedDocumentError(path, f"invalid front matter: {exc}") from exc

    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise MalformedDocumentError(path, "front matter is not a mapping")
    return text[match.end():], fields


def derive_slug(path: Path, root: Path, override: Any = None) -> str:
    """Resolve the canonical identifier of a document.

    A non-blank override wins and is only trimmed. Otherwise the path
    relative to `root` loses its extension and a trailing `index` segment,
    and is lower-cased.
    """
    if override is not None and str(override).strip():
        return str(override).strip()

    relative = path.relative_to(root).as_posix() if path != root else path.name
    slug = _MARKDOWN_SUFFIX.sub("", relative)
    slug = _INDEX_SEGMENT.sub("", slug)
    return slug.lower()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def markdown_to_plain(body: str) -> str:
    """Strip Markdown markup, keeping paragraphs separated by blank lines.

    Only prose blocks are kept: code blocks and tables are dropped.
    """
    if not body.strip():
        return ""

    html = markdown.markdown(body, extensions=["extra"])
    soup = BeautifulSoup(html, "html.parser")

    paragraphs = []
    for element in soup.find_all(_BLOCK_TAGS):
        # Nested blocks are covered by their outermost block.
        if element.find_parent(_BLOCK_TAGS) is not None:
            continue
        text = " ".join(element.get_text().split())
        if text:
            paragraphs.append(text)
    return "\n\n".join(paragraphs)


def load_document(path: Path, root: Path) -> Document:
    """Read and parse one Markdown file.

    Raises:
        SourceAccessError: the file cannot be stat'ed or read.
        MalformedDocumentError: the file is not UTF-8 or its front matter is invalid.
    """
    mtime = mtime_millis(path)
    try:
        raw_bytes = path.read_bytes()
    except OSError as exc:
        raise SourceAccessError(path, str(exc)) from exc

    try:
        raw = raw_bytes.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedDocumentError(path, f"not valid UTF-8: {exc}") from exc

    body, fields = parse_front_matter(raw, path=path)
    slug = derive_slug(path, root, fields.get("slug"))
    title = fields.get("title")
    description = fields.get("description")

    LOGGER.debug("Loaded %s as %s", path, slug)
    return Document(
        slug=slug,
        title=str(title) if title else slug,
        description=str(description) if description else "",
        draft=_as_bool(fields.get("draft", False)),
        mtime=mtime,
        body=body,
        path=path,
    )
