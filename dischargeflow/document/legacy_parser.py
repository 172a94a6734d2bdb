from __future__ import annotations

"""
Reconstruct section/table structure from older free-form summaries.

Design intent:
- Give records without a structured document a readable sectioned view.
- Recognize `## Heading` blocks and pipe tables; everything else stays prose.
- Pure and restartable: same text in, same sections out.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

_HEADING_RE = re.compile(r"^##\s+(.+)$")
_SEPARATOR_RE = re.compile(r"^\|[\s\-:|]+\|$")


@dataclass(frozen=True)
class ParagraphSection:
    title: Optional[str]
    content: str
    type: str = "paragraph"


@dataclass(frozen=True)
class TableSection:
    title: Optional[str]
    headers: list[str]
    rows: list[list[str]]
    type: str = "table"


Section = Union[ParagraphSection, TableSection]


def _split_row(line: str) -> list[str]:
    cells = [cell.strip() for cell in line.split("|")]
    if cells and cells[0] == "":
        cells = cells[1:]
    if cells and cells[-1] == "":
        cells = cells[:-1]
    return cells


def parse_pipe_table(body: str) -> tuple[list[str], list[list[str]]]:
    lines = [line.strip() for line in body.splitlines()]
    lines = [line for line in lines if line]
    separator_index = -1
    for i, line in enumerate(lines):
        if i >= 1 and _SEPARATOR_RE.match(line):
            separator_index = i
            break
    if separator_index < 0:
        return [], []

    headers = _split_row(lines[separator_index - 1])
    rows = [_split_row(line) for line in lines[separator_index + 1 :] if "|" in line]
    return headers, rows


def _build_section(title: Optional[str], body: str) -> Optional[Section]:
    content = body.strip()
    if not content:
        # A heading keeps its place even with nothing under it yet.
        return ParagraphSection(title=title, content="") if title is not None else None
    headers, rows = parse_pipe_table(content)
    if headers or rows:
        return TableSection(title=title, headers=headers, rows=rows)
    return ParagraphSection(title=title, content=content)


def parse_legacy_text(raw: Optional[str]) -> list[Section]:
    if not raw or not raw.strip():
        return []

    sections: list[Section] = []
    title: Optional[str] = None
    body_lines: list[str] = []

    def flush() -> None:
        section = _build_section(title, "\n".join(body_lines))
        if section is not None:
            sections.append(section)

    for line in raw.splitlines():
        match = _HEADING_RE.match(line.strip())
        if match:
            flush()
            title = match.group(1).strip()
            body_lines = []
            continue
        body_lines.append(line)
    flush()
    return sections
