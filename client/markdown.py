"""
Markdown → editor blocks.

A small line-oriented converter that turns queued markdown into the block
list the editor inserts: one block per non-empty line, except fenced code,
which becomes a single "block" holding its lines. Inline markup is split
into typed segments.

Block types: heading (mp.hsize 1-6), task, ulist, olist, quote, br
(horizontal rule), text, block (code, mp.language).
Segment types: text, code, bold, italic. Links keep only their label.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Segment:
    type: str
    text: str


@dataclass
class Block:
    type: str
    segments: list[Segment] = field(default_factory=list)
    mp: dict[str, Any] = field(default_factory=dict)
    code_lines: Optional[list[str]] = None

    def to_dict(self) -> dict[str, Any]:
        """Editor line-item shape: type, mp, segments, and codeLines for code blocks."""
        data: dict[str, Any] = {
            "type": self.type,
            "segments": [{"type": s.type, "text": s.text} for s in self.segments],
        }
        if self.mp:
            data["mp"] = dict(self.mp)
        if self.code_lines is not None:
            data["codeLines"] = list(self.code_lines)
        return data


_FENCE = "```"
_HR = re.compile(r"^(\*\s*\*\s*\*|-\s*-\s*-|_\s*_\s*_)[\s*\-_]*$")
_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_TASK = re.compile(r"^[-*]\s+\[([ xX])\]\s+(.+)$")
_BULLET = re.compile(r"^[-*]\s+(.+)$")
_ORDERED = re.compile(r"^\d+\.\s+(.+)$")

# Earlier entries win when two patterns match at the same offset
_INLINE: list[tuple[re.Pattern, str]] = [
    (re.compile(r"`([^`]+)`"), "code"),
    (re.compile(r"\[([^\]]+)\]\(([^)]+)\)"), "link"),
    (re.compile(r"\*\*([^*]+)\*\*"), "bold"),
    (re.compile(r"__([^_]+)__"), "bold"),
    (re.compile(r"\*([^*]+)\*"), "italic"),
    (re.compile(r"(?<![A-Za-z])_([^_]+)_(?![A-Za-z])"), "italic"),
]


def parse_markdown(markdown: str) -> list[Block]:
    blocks: list[Block] = []
    code_lines: Optional[list[str]] = None
    language = ""

    for line in markdown.split("\n"):
        if line.startswith(_FENCE):
            if code_lines is None:
                code_lines = []
                language = line[len(_FENCE):].strip()
            else:
                if code_lines:
                    blocks.append(_code_block(code_lines, language))
                code_lines = None
                language = ""
            continue

        if code_lines is not None:
            code_lines.append(line)
            continue

        block = parse_line(line)
        if block is not None:
            blocks.append(block)

    # Unclosed fence: keep what was collected
    if code_lines:
        blocks.append(_code_block(code_lines, language))

    return blocks


def _code_block(lines: list[str], language: str) -> Block:
    return Block(type="block", mp={"language": language or "plaintext"}, code_lines=lines)


def parse_line(line: str) -> Optional[Block]:
    if not line.strip():
        return None

    if _HR.match(line.strip()):
        return Block(type="br")

    m = _HEADING.match(line)
    if m:
        return Block(
            type="heading",
            mp={"hsize": len(m.group(1))},
            segments=parse_inline(m.group(2)),
        )

    # Tasks before bullets: "- [ ] x" also matches the bullet pattern
    m = _TASK.match(line)
    if m:
        return Block(type="task", segments=parse_inline(m.group(2)))

    m = _BULLET.match(line)
    if m:
        return Block(type="ulist", segments=parse_inline(m.group(1)))

    m = _ORDERED.match(line)
    if m:
        return Block(type="olist", segments=parse_inline(m.group(1)))

    if line.startswith("> "):
        return Block(type="quote", segments=parse_inline(line[2:]))

    return Block(type="text", segments=parse_inline(line))


def parse_inline(text: str) -> list[Segment]:
    segments: list[Segment] = []
    remaining = text

    while remaining:
        earliest = None
        kind = ""
        for pattern, pattern_kind in _INLINE:
            m = pattern.search(remaining)
            if m and (earliest is None or m.start() < earliest.start()):
                earliest, kind = m, pattern_kind

        if earliest is None:
            segments.append(Segment("text", remaining))
            break

        if earliest.start() > 0:
            segments.append(Segment("text", remaining[:earliest.start()]))
        segments.append(Segment("text" if kind == "link" else kind, earliest.group(1)))
        remaining = remaining[earliest.end():]

    return segments or [Segment("text", text)]
