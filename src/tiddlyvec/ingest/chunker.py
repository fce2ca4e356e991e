"""Paragraph/sentence chunker with a soft token ceiling.

Strategy:
- Text within the budget is returned unchanged as a single chunk.
- Otherwise paragraphs (blank-line separated) are packed greedily into chunks.
- A paragraph that alone exceeds the budget is packed sentence by sentence.
- A single sentence over the budget is emitted as its own chunk; the budget is
  a soft ceiling, not a hard one.

Chunks are exact substrings of the input: joining consecutive chunks with the
separator that stood between them in the source gives the source text back,
except that blank paragraphs or sentences are dropped once the text is split, so
leading and trailing separators of an over-budget text do not survive.

Only the empty string yields no chunks. Whitespace-only text within the budget
is returned as is, like any other text; callers screen blank bodies themselves.
"""

from __future__ import annotations

import re
from collections.abc import Callable

import litellm

TokenCounter = Callable[[str], int]

DEFAULT_MAX_TOKENS = 6000
# cl100k tokenizer; close enough to nomic-embed-text's budget accounting.
DEFAULT_TOKENIZER_MODEL = "gpt-3.5-turbo"

_PARAGRAPH_SEP_RE = re.compile(r"(\n\s*\n)")
_SENTENCE_SEP_RE = re.compile(r"(?<=[.!?])(\s+)")


def count_tokens(text: str, model: str = DEFAULT_TOKENIZER_MODEL) -> int:
    """Count tokens in *text* with LiteLLM's tokenizer for *model*.

    Falls back to character-based approximation (4 chars ≈ 1 token) if the model
    is not supported by litellm.token_counter().
    """
    try:
        return litellm.token_counter(model=model, text=text)
    except Exception:
        return max(1, len(text) // 4)


class ParagraphChunker:
    """Split tiddler text into token-bounded chunks.

    Args:
        max_tokens: Soft per-chunk token budget.
        token_counter: Callable returning the token count of a string. Defaults
            to :func:`count_tokens`. The chunker is deterministic for a given
            counter.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        token_counter: TokenCounter | None = None,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        self.max_tokens = max_tokens
        self._count = token_counter or count_tokens

    def chunk(self, text: str) -> list[str]:
        """Return the ordered, non-empty chunks of *text*."""
        if not text:
            return []
        if self._count(text) <= self.max_tokens:
            return [text]
        return self._pack(_split_keeping_separators(text, _PARAGRAPH_SEP_RE), self._split_paragraph)

    def _split_paragraph(self, paragraph: str) -> list[str]:
        units = _split_keeping_separators(paragraph, _SENTENCE_SEP_RE)
        return self._pack(units, lambda sentence: [sentence])

    def _pack(
        self,
        units: list[tuple[str, str]],
        split_oversized: Callable[[str], list[str]],
    ) -> list[str]:
        """Greedily join (separator, unit) pairs into chunks within the budget.

        A unit too large on its own is handed to *split_oversized*; the last
        piece it returns stays open so following units can still join it.
        """
        chunks: list[str] = []
        current = ""

        for sep, unit in units:
            if not unit.strip():
                continue
            candidate = f"{current}{sep}{unit}" if current else unit
            if self._count(candidate) <= self.max_tokens:
                current = candidate
                continue

            if current:
                chunks.append(current)
                current = ""

            if self._count(unit) <= self.max_tokens:
                current = unit
            else:
                pieces = split_oversized(unit)
                chunks.extend(pieces[:-1])
                current = pieces[-1] if pieces else ""

        if current:
            chunks.append(current)
        return chunks


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    token_counter: TokenCounter | None = None,
) -> list[str]:
    """Functional shortcut for ``ParagraphChunker(max_tokens, token_counter).chunk(text)``."""
    return ParagraphChunker(max_tokens, token_counter).chunk(text)


def _split_keeping_separators(text: str, pattern: re.Pattern[str]) -> list[tuple[str, str]]:
    """Split *text* on *pattern* into ``(separator_before, unit)`` pairs.

    The first unit has an empty separator. *pattern* must have exactly one
    capturing group around the separator.
    """
    parts = pattern.split(text)
    pairs = [("", parts[0])]
    for i in range(1, len(parts), 2):
        pairs.append((parts[i], parts[i + 1]))
    return pairs
