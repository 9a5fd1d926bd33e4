"""Thinking-block extraction for agent text.

Agents may wrap reasoning in ``<think>...</think>`` spans. The spans stay
inline in the displayed message; extraction only reports what they contain so
a UI can show a "thought for N words" summary. Agent text is arbitrary and
often mid-stream, so extraction never raises: an HTML-tolerant streaming
parser does the work and a regex pass covers anything it chokes on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from html.parser import HTMLParser

from threadline.logging import get_logger

log = get_logger("timeline.thinking")

THINK_TAG = "think"
INCOMPLETE_SUFFIX = " [incomplete]"

_THINK_RE = re.compile(r"<think>([\s\S]*?)</think>", re.IGNORECASE)


@dataclass(frozen=True)
class ThinkingExtraction:
    """Result of scanning agent text for thinking blocks.

    Attributes:
        content: The original text, thinking spans included.
        blocks: Stripped inner text of each non-empty thinking span.
    """

    content: str
    blocks: tuple[str, ...] = ()

    @property
    def has_thinking(self) -> bool:
        return bool(self.blocks)

    @property
    def word_count(self) -> int:
        return sum(count_words(block) for block in self.blocks)


class _ThinkParser(HTMLParser):
    """Collects the text inside <think> tags; every other tag is ignored."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.blocks: list[str] = []
        self._inside = False
        self._buffer: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == THINK_TAG and not self._inside:
            self._inside = True
            self._buffer = []

    def handle_endtag(self, tag: str) -> None:
        if tag == THINK_TAG and self._inside:
            self._flush()
            self._inside = False

    def handle_data(self, data: str) -> None:
        if self._inside:
            self._buffer.append(data)

    def finish(self) -> list[str]:
        self.close()
        if self._inside:
            # Unterminated block, typically a message still streaming
            text = "".join(self._buffer).strip()
            if text:
                self.blocks.append(text + INCOMPLETE_SUFFIX)
            self._inside = False
        return self.blocks

    def _flush(self) -> None:
        text = "".join(self._buffer).strip()
        if text:
            self.blocks.append(text)
        self._buffer = []


def _extract_with_regex(text: str) -> list[str]:
    return [m.group(1).strip() for m in _THINK_RE.finditer(text) if m.group(1).strip()]


def extract_thinking_blocks(text: str | None) -> ThinkingExtraction:
    """Report the thinking blocks in ``text`` without removing them."""
    if not text:
        return ThinkingExtraction(content=text or "")

    if "<" not in text:
        return ThinkingExtraction(content=text)

    try:
        parser = _ThinkParser()
        parser.feed(text)
        blocks = parser.finish()
    except Exception as e:
        log.debug("Thinking parser failed (%s), falling back to regex", e)
        blocks = _extract_with_regex(text)

    return ThinkingExtraction(content=text, blocks=tuple(blocks))


def count_words(text: str | None) -> int:
    """Count whitespace-separated words.

    Runs without internal whitespace count once, so ``well-known`` and
    ``e.g.,`` are one word each.
    """
    if not text:
        return 0
    return len(text.split())


def summarize_thinking(blocks: tuple[str, ...] | list[str]) -> str:
    """Render the collapsed summary line for a message's thinking blocks."""
    words = sum(count_words(block) for block in blocks)
    return f"thought for {words} {'word' if words == 1 else 'words'}"
