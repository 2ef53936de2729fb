"""Marker blocks for reversible text injections.

An injection lives in its host file between two sentinel lines:

    <!-- skillfactory:<extension>:<target>:<position>:start -->
    ...injected text...
    <!-- skillfactory:<extension>:<target>:<position>:end -->

Blocks are located with a line scanner over the three-part tag rather than
a regular expression, so user text that merely resembles a sentinel is
never matched. Every block owns exactly one separator newline: the newline
after a prepended block, the newline before an appended one, or the other
side when the block touches the edge of the file. Stripping removes the
block together with that newline, which makes
``strip_block(apply_block(text, ...)) == text``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from extensions.manifest import InjectionPosition

SENTINEL_PREFIX = "<!-- skillfactory:"
SENTINEL_SUFFIX = " -->"

_KINDS = ("start", "end")
_POSITIONS = {p.value for p in InjectionPosition}


@dataclass(frozen=True)
class MarkerTag:
    """Identity of one injected block: (extension, target, position)."""

    extension: str
    target: str
    position: str

    @property
    def start_line(self) -> str:
        return f"{SENTINEL_PREFIX}{self.extension}:{self.target}:{self.position}:start{SENTINEL_SUFFIX}"

    @property
    def end_line(self) -> str:
        return f"{SENTINEL_PREFIX}{self.extension}:{self.target}:{self.position}:end{SENTINEL_SUFFIX}"


@dataclass(frozen=True)
class MarkerSpan:
    """A complete block found in a text.

    Attributes:
        tag: The block's three-part tag.
        start: Offset of the first character of the start line.
        end: Offset just past the end line (including its newline).
        body: Text between the two sentinel lines.
    """

    tag: MarkerTag
    start: int
    end: int
    body: str


def parse_sentinel(line: str) -> tuple[MarkerTag, str] | None:
    """Parse one line as a sentinel.

    Args:
        line: A single line without its line terminator.

    Returns:
        (tag, kind) where kind is "start" or "end", or None if the line is
        not a well-formed sentinel.
    """
    if not line.startswith(SENTINEL_PREFIX) or not line.endswith(SENTINEL_SUFFIX):
        return None

    inner = line[len(SENTINEL_PREFIX):-len(SENTINEL_SUFFIX)]
    parts = inner.split(":")
    if len(parts) != 4:
        return None

    extension, target, position, kind = parts
    if not extension or not target or position not in _POSITIONS or kind not in _KINDS:
        return None
    return MarkerTag(extension, target, position), kind


def _lines(text: str) -> Iterator[tuple[int, int, str]]:
    """Yield (start, end, line) for each line; end includes the newline."""
    offset = 0
    length = len(text)
    while offset < length:
        newline = text.find("\n", offset)
        end = length if newline == -1 else newline + 1
        yield offset, end, text[offset:end].rstrip("\n").rstrip("\r")
        offset = end


def find_blocks(text: str) -> list[MarkerSpan]:
    """Scan a text for complete marker blocks.

    A block closes at the first end line carrying the same tag as its start
    line. Start lines without a matching end line are ignored.

    Args:
        text: Host file content.

    Returns:
        Blocks ordered by their start offset.
    """
    spans: list[MarkerSpan] = []
    open_blocks: dict[MarkerTag, tuple[int, int]] = {}

    for start, end, line in _lines(text):
        parsed = parse_sentinel(line)
        if parsed is None:
            continue
        tag, kind = parsed
        if kind == "start":
            open_blocks.setdefault(tag, (start, end))
        elif tag in open_blocks:
            block_start, body_start = open_blocks.pop(tag)
            spans.append(MarkerSpan(tag, block_start, end, text[body_start:start]))

    spans.sort(key=lambda span: span.start)
    return spans


def _cut(text: str, span: MarkerSpan) -> str:
    """Remove a block and the separator newline it introduced.

    Prepended blocks own the newline after their end line, appended blocks
    the newline before their start line. When that side has none (the block
    touches the edge of the file) the other side is used.
    """
    start, end = span.start, span.end
    newline_after = end < len(text) and text[end] == "\n"
    if span.tag.position == InjectionPosition.PREPEND.value and newline_after:
        end += 1
    elif start > 0:
        # start lines always follow a newline
        start -= 1
    elif newline_after:
        end += 1
    return text[:start] + text[end:]


def _strip_matching(text: str, predicate) -> tuple[str, int]:
    removed = 0
    while True:
        spans = [span for span in find_blocks(text) if predicate(span.tag)]
        if not spans:
            return text, removed
        text = _cut(text, spans[-1])
        removed += 1


def strip_block(text: str, extension: str, target: str, position: str) -> str:
    """Remove the block for one (extension, target, position) triple.

    No-op when the file holds no such block.
    """
    tag = MarkerTag(extension, target, str(getattr(position, "value", position)))
    stripped, _ = _strip_matching(text, lambda candidate: candidate == tag)
    return stripped


def strip_extension(text: str, extension: str) -> str:
    """Remove every block of an extension, whatever its target or position."""
    stripped, _ = _strip_matching(text, lambda tag: tag.extension == extension)
    return stripped


def mentions_extension(text: str, extension: str) -> bool:
    """Cheap check for any sentinel of an extension in a text."""
    return f"{SENTINEL_PREFIX}{extension}:" in text


def front_matter_end(text: str) -> int | None:
    """Offset just past a leading YAML front matter section, if any."""
    lines = _lines(text)
    first = next(lines, None)
    if first is None or first[2] != "---":
        return None
    for _, end, line in lines:
        if line == "---":
            return end
    return None


def apply_block(
    text: str,
    block: str,
    position: str,
    extension: str,
    target: str,
) -> str:
    """Insert (or refresh) an injection block.

    Any existing block with the same triple is stripped first, so applying
    twice gives the same result as applying once.

    Args:
        text: Host file content.
        block: Text to inject; trailing whitespace is dropped.
        position: "append" (end of file) or "prepend" (after front matter,
            else start of file).
        extension: Extension name.
        target: Target skill id.

    Returns:
        The updated content.
    """
    position = str(getattr(position, "value", position))
    if position not in _POSITIONS:
        raise ValueError(f"Invalid injection position: {position!r}")

    tag = MarkerTag(extension, target, position)
    content = strip_block(text, extension, target, position)
    span = f"{tag.start_line}\n{block.rstrip()}\n{tag.end_line}\n"

    if position == InjectionPosition.APPEND.value:
        return content + "\n" + span

    fm_end = front_matter_end(content)
    if fm_end is None:
        return span + "\n" + content
    if content[fm_end - 1] != "\n":
        # closing --- is the unterminated last line
        return content + "\n" + span
    return content[:fm_end] + span + "\n" + content[fm_end:]
