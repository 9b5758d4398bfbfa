"""File loaders for knowledge-source ingestion.

DocumentLoader reads a local file, decodes it, and flattens it into one
text body plus a title, ready for chunking. Format is chosen by extension:
Markdown (YAML frontmatter may supply title and tags), JSON, CSV, and
plain text.
"""

from __future__ import annotations

import csv
import io
import json
import re
from pathlib import Path
from typing import Any

import chardet
import structlog
import yaml
from pydantic import BaseModel, Field

from src.brain.errors import InvalidRequestError

logger = structlog.get_logger(__name__)


class LoadedDocument(BaseModel):
    """A decoded file ready to become a KnowledgeSource.

    Attributes:
        url: Resolved file path, used as the source's unique url.
        title: Frontmatter title, first heading, or file stem.
        content: Flattened text body.
        source_type: Detected format ("markdown", "json", "csv", "text").
        tags: Tags from frontmatter, if any.
    """

    url: str
    title: str
    content: str
    source_type: str
    tags: list[str] = Field(default_factory=list)


SUPPORTED_EXTENSIONS: dict[str, str] = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".json": "json",
    ".csv": "csv",
    ".txt": "text",
    ".text": "text",
}

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
_FIRST_HEADING = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def decode_bytes(raw: bytes) -> str:
    """Decode as UTF-8, falling back to chardet's best guess."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        detected = chardet.detect(raw)
        encoding = detected.get("encoding") or "utf-8"
        logger.info(
            "loader.encoding_detected",
            encoding=encoding,
            confidence=detected.get("confidence"),
        )
        return raw.decode(encoding, errors="replace")


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return (frontmatter, body); frontmatter is {} when absent or invalid."""
    match = _FRONTMATTER.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        logger.warning("loader.frontmatter_invalid")
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


def _frontmatter_tags(value: Any) -> list[str]:
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    return []


def _flatten(value: Any, depth: int = 0) -> list[str]:
    pad = "  " * depth
    lines: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            label = str(key).replace("_", " ").title()
            if isinstance(item, dict | list):
                lines.append(f"{pad}{label}:")
                lines.extend(_flatten(item, depth + 1))
            else:
                lines.append(f"{pad}{label}: {item}")
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, dict | list):
                lines.extend(_flatten(item, depth))
                lines.append("")
            else:
                lines.append(f"{pad}- {item}")
    else:
        lines.append(f"{pad}{value}")
    return lines


def _read_markdown(path: Path, text: str) -> tuple[str, str, list[str]]:
    meta, body = split_frontmatter(text)
    title = meta.get("title")
    if not title:
        heading = _FIRST_HEADING.search(body)
        title = heading.group(1) if heading else path.stem
    return str(title), body.strip(), _frontmatter_tags(meta.get("tags"))


def _read_json(path: Path, text: str) -> tuple[str, str, list[str]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidRequestError(f"Invalid JSON in {path}: {exc}") from exc
    title = path.stem
    if isinstance(data, dict):
        title = str(data.get("title") or data.get("name") or path.stem)
    return title, "\n".join(_flatten(data)).strip(), []


def _read_csv(path: Path, text: str) -> tuple[str, str, list[str]]:
    rows = []
    for row in csv.DictReader(io.StringIO(text)):
        rows.append("\n".join(f"{col}: {val}" for col, val in row.items() if val))
    return path.stem, "\n\n".join(r for r in rows if r), []


def _read_text(path: Path, text: str) -> tuple[str, str, list[str]]:
    return path.stem, text.strip(), []


_READERS = {
    "markdown": _read_markdown,
    "json": _read_json,
    "csv": _read_csv,
    "text": _read_text,
}


class DocumentLoader:
    """Extension-dispatching loader for local knowledge files.

    Usage:
        document = DocumentLoader().load("notes/roadmap.md")
    """

    def load(self, file_path: str | Path, content_type: str | None = None) -> LoadedDocument:
        """Load and flatten one file.

        Args:
            file_path: Path to the file.
            content_type: Format override ("markdown", "json", "csv", "text").

        Returns:
            The decoded document.

        Raises:
            FileNotFoundError: If the file does not exist.
            InvalidRequestError: If the format is unsupported or unparseable.
        """
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {path}")

        fmt = content_type or SUPPORTED_EXTENSIONS.get(path.suffix.lower())
        reader = _READERS.get(fmt or "")
        if reader is None:
            supported = ", ".join(sorted(SUPPORTED_EXTENSIONS))
            raise InvalidRequestError(
                f"Unsupported file format: '{path.suffix}'. Supported formats: {supported}"
            )

        title, content, tags = reader(path, decode_bytes(path.read_bytes()))
        logger.info("loader.loaded", path=str(path), format=fmt, chars=len(content))
        return LoadedDocument(
            url=str(path.resolve()),
            title=title.strip() or path.stem,
            content=content,
            source_type=fmt or "text",
            tags=tags,
        )
