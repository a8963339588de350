"""Text chunking with overlap for the RAG pipeline.

Character-based and tokenizer-free. Text is packed by paragraphs first,
long paragraphs fall back to sentences, and sentences longer than a chunk
are split into fixed-width windows.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

import structlog

from docqa import config
from docqa.errors import InvalidInputError

logger = structlog.get_logger()

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_TERMINATORS = frozenset(".?!。．？！\n")

_BLANK_LINE = re.compile(r"\n\s*\n")


@dataclass
class TextChunk:
    """A chunk of text with its position in the chunk sequence."""

    content: str
    chunk_index: int
    total_chunks: int


@dataclass
class _Piece:
    """Chunk content before indexing.

    ``seeded`` pieces already start with text copied from their predecessor
    and are left alone by the overlap pass.
    """

    text: str
    seeded: bool = False


def _tail(text: str, size: int) -> str:
    if size <= 0:
        return ""
    return text[-size:]


def split_sentences(text: str) -> List[str]:
    """Split text after every terminal punctuation mark or newline.

    Whitespace directly following the terminator belongs to the sentence
    it ends. Returned sentences are trimmed; empty ones are dropped.
    """
    sentences = []
    start = 0
    i = 0
    length = len(text)

    while i < length:
        if text[i] in SENTENCE_TERMINATORS:
            i += 1
            while i < length and text[i].isspace():
                i += 1
            sentences.append(text[start:i])
            start = i
        else:
            i += 1

    if start < length:
        sentences.append(text[start:])

    return [s.strip() for s in sentences if s.strip()]


def force_split(text: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    """Slide a fixed window over text; each window repeats the last
    ``chunk_overlap`` characters of the one before it."""
    windows = []
    start = 0

    while start < len(text):
        end = min(start + chunk_size, len(text))
        windows.append(text[start:end])
        start = end - chunk_overlap
        if start >= len(text) - chunk_overlap:
            break

    return windows


class TextChunker:
    """Paragraph, sentence and fixed-width chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        separator: Optional[str] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Soft maximum chunk length in characters (default from config)
            chunk_overlap: Characters copied from the end of one chunk into the
                next (default from config)
            separator: Literal paragraph delimiter; blank lines when not set

        Raises:
            InvalidInputError: If the size/overlap combination is unusable
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.separator = separator if separator is not None else config.CHUNK_SEPARATOR

        # Validate parameters
        if self.chunk_size <= 0:
            raise InvalidInputError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise InvalidInputError(
                f"Overlap must not be negative, got {self.chunk_overlap}"
            )
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidInputError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            custom_separator=self.separator is not None,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Empty or whitespace-only text yields a single empty chunk.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects, never empty

        Raises:
            InvalidInputError: If text is not a string
        """
        if not isinstance(text, str):
            raise InvalidInputError(
                f"Text to chunk must be a string, got {type(text).__name__}"
            )

        trimmed = text.strip()

        # Handle text shorter than chunk size
        if len(trimmed) <= self.chunk_size:
            logger.debug(
                "text_shorter_than_chunk_size",
                text_length=len(trimmed),
                chunk_size=self.chunk_size,
            )
            return [TextChunk(content=trimmed, chunk_index=0, total_chunks=1)]

        pieces = self._pack_paragraphs(trimmed)
        contents = self._apply_overlap(pieces)

        total = len(contents)
        chunks = [
            TextChunk(content=content, chunk_index=index, total_chunks=total)
            for index, content in enumerate(contents)
        ]

        logger.info(
            "text_chunked",
            text_length=len(trimmed),
            chunk_count=total,
            avg_chunk_size=sum(len(c.content) for c in chunks) // total,
        )

        return chunks

    def _split_paragraphs(self, text: str) -> List[str]:
        if self.separator:
            return text.split(self.separator)
        return _BLANK_LINE.split(text)

    def _pack_paragraphs(self, text: str) -> List[_Piece]:
        pieces: List[_Piece] = []
        current = ""

        for paragraph in self._split_paragraphs(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(paragraph) > self.chunk_size:
                # Too long to pack whole: flush and split by sentences
                if current:
                    pieces.append(_Piece(current))
                    current = ""
                pieces.extend(self._pack_sentences(paragraph))
            elif len(current) + len(paragraph) + len(PARAGRAPH_SEPARATOR) > self.chunk_size:
                if current:
                    pieces.append(_Piece(current))
                current = paragraph
            else:
                current = (
                    current + PARAGRAPH_SEPARATOR + paragraph if current else paragraph
                )

        if current:
            pieces.append(_Piece(current))

        return pieces

    def _pack_sentences(self, paragraph: str) -> List[_Piece]:
        pieces: List[_Piece] = []
        current = ""
        seeded = False

        for sentence in split_sentences(paragraph):
            if len(sentence) > self.chunk_size:
                if current:
                    pieces.append(_Piece(current.strip(), seeded))

                windows = force_split(sentence, self.chunk_size, self.chunk_overlap)
                pieces.append(_Piece(windows[0]))
                pieces.extend(_Piece(w, seeded=True) for w in windows[1:-1])

                # The last window stays open for the sentences that follow
                current = windows[-1]
                seeded = len(windows) > 1
            elif len(current) + len(sentence) + 1 > self.chunk_size:
                if current:
                    pieces.append(_Piece(current.strip(), seeded))
                    overlap = _tail(current, self.chunk_overlap)
                    current = f"{overlap} {sentence}" if overlap else sentence
                    seeded = bool(overlap)
                else:
                    current = sentence
                    seeded = False
            else:
                current = f"{current} {sentence}" if current else sentence

        if current.strip():
            pieces.append(_Piece(current.strip(), seeded))

        return pieces

    def _apply_overlap(self, pieces: List[_Piece]) -> List[str]:
        """Prepend the tail of the previous piece to every unseeded piece."""
        if len(pieces) <= 1 or self.chunk_overlap <= 0:
            return [p.text for p in pieces]

        contents = [pieces[0].text]
        for previous, piece in zip(pieces, pieces[1:]):
            if piece.seeded:
                contents.append(piece.text)
                continue
            overlap = _tail(previous.text, self.chunk_overlap)
            contents.append(f"{overlap} {piece.text}".strip())

        return contents

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def chunk_text(
    text: str,
    chunk_size: int = None,
    chunk_overlap: int = None,
    separator: Optional[str] = None,
) -> List[TextChunk]:
    """Chunk text with a one-off chunker (convenience function).

    Args:
        text: Text to chunk
        chunk_size: Soft maximum chunk length in characters
        chunk_overlap: Overlap between chunks in characters
        separator: Literal paragraph delimiter

    Returns:
        List of TextChunk objects
    """
    chunker = TextChunker(
        chunk_size=chunk_size, chunk_overlap=chunk_overlap, separator=separator
    )
    return chunker.chunk_text(text)
