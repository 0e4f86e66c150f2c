"""Word-boundary text chunking with character-sized overlapping windows.

Splits one page's extracted text into :class:`~sitekb.models.rag.Chunk`
objects sized for embedding (default ~1000 characters with ~200 characters
of overlap).

The algorithm accumulates whole words into a window until adding the next
word would exceed ``chunk_size``; the next window then starts far enough
back that it repeats roughly ``overlap`` characters of the previous one, so
a sentence spanning a boundary survives intact in at least one chunk.

Guarantees:

* text shorter than ``min_chunk_chars`` (after trimming) yields no chunks;
* text no longer than ``chunk_size`` yields exactly one chunk, the trimmed input;
* no chunk is longer than ``max_chunk_chars``, even for a single huge "word"
  (such words are cut into overlapping pieces first);
* every emitted chunk is at least ``min_chunk_chars`` long.

The chunker is a pure function of its input and holds no state between calls.
"""

from __future__ import annotations

import structlog

from sitekb.models.rag import Chunk

logger = structlog.get_logger(logger_name=__name__)


class TextChunker:
    """Splits page text into ordered, overlapping chunks.

    Parameters
    ----------
    chunk_size:
        Target window size in characters (default 1000).
    overlap:
        Approximate characters repeated between consecutive windows (default 200).
    min_chunk_chars:
        Windows shorter than this are dropped (default 50).
    max_chunk_chars:
        Hard cap on chunk length (default 1200).  Must be >= ``chunk_size``.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        min_chunk_chars: int = 50,
        max_chunk_chars: int = 1200,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= overlap < chunk_size:
            raise ValueError(f"overlap must be in [0, chunk_size), got {overlap}")
        if min_chunk_chars < 1:
            raise ValueError(f"min_chunk_chars must be >= 1, got {min_chunk_chars}")
        if max_chunk_chars < chunk_size:
            raise ValueError(
                f"max_chunk_chars ({max_chunk_chars}) must be >= chunk_size ({chunk_size})"
            )
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_chars = min_chunk_chars
        self._max_chars = max_chunk_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, source_url: str, tenant_id: str = "") -> list[Chunk]:
        """Split *text* into :class:`Chunk` objects numbered from ordinal 0.

        Parameters
        ----------
        text:
            Page text.  Leading/trailing whitespace is ignored.
        source_url:
            URL recorded on every chunk.
        tenant_id:
            Owning tenant recorded on every chunk.

        Returns
        -------
        list[Chunk]
            Chunks in page order.  Empty or too-short input returns ``[]``.
        """
        windows = self.split(text)
        return [
            Chunk(tenant_id=tenant_id, source_url=source_url, text=window, ordinal=ordinal)
            for ordinal, window in enumerate(windows)
        ]

    def split(self, text: str) -> list[str]:
        """Return the chunk texts for *text* without wrapping them in models."""
        stripped = (text or "").strip()
        if len(stripped) < self._min_chars:
            return []
        if len(stripped) <= self._chunk_size:
            return [stripped]

        words = [piece for word in stripped.split() for piece in self._split_long_word(word)]
        windows = self._accumulate(words)
        logger.debug(
            "text_chunked",
            input_chars=len(stripped),
            words=len(words),
            chunks=len(windows),
        )
        return windows

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _accumulate(self, words: list[str]) -> list[str]:
        windows: list[str] = []
        start = 0
        total = len(words)

        while start < total:
            current = ""
            end = start
            for idx in range(start, total):
                candidate = f"{current} {words[idx]}" if current else words[idx]
                if len(candidate) > self._chunk_size and current:
                    break
                current = candidate
                end = idx

            if len(current) >= self._min_chars:
                windows.append(current)

            if end >= total - 1:
                break

            # Walk back from the window's last word until ~overlap chars are covered.
            overlap_chars = 0
            overlap_words = 0
            idx = end
            while idx >= start and overlap_chars < self._overlap:
                overlap_chars += len(words[idx]) + 1
                overlap_words += 1
                idx -= 1

            start = max(start + 1, end - overlap_words + 1)

        return windows

    def _split_long_word(self, word: str) -> list[str]:
        """Cut a word longer than ``max_chunk_chars`` into overlapping ``chunk_size`` pieces."""
        if len(word) <= self._max_chars:
            return [word]

        step = self._chunk_size - self._overlap
        pieces: list[str] = []
        offset = 0
        while True:
            pieces.append(word[offset : offset + self._chunk_size])
            if offset + self._chunk_size >= len(word):
                break
            offset += step
        return pieces
