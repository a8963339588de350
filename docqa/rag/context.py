"""Context assembly: retrieved chunks -> grounding text plus citations."""
from typing import List, Optional, Sequence

import structlog

from docqa import config
from docqa.models import AssembledContext, Citation, SearchResult

logger = structlog.get_logger()

CONTEXT_SEPARATOR = "\n\n"
PREVIEW_CHARS = 100
TRUNCATION_MARKER = "..."


def make_preview(
    content: str, limit: int = PREVIEW_CHARS, marker: str = TRUNCATION_MARKER
) -> str:
    """First ``limit`` characters of content, marked when something was cut."""
    if len(content) > limit:
        return content[:limit] + marker
    return content


class ContextAssembler:
    """Merges retriever output into prompt context and a citation list.

    Order is preserved exactly as retrieved. Chunks from the same document
    are not merged or deduplicated.
    """

    def __init__(
        self,
        separator: str = CONTEXT_SEPARATOR,
        preview_chars: int = PREVIEW_CHARS,
        marker: str = TRUNCATION_MARKER,
        max_chars: Optional[int] = None,
    ):
        """Initialize the assembler.

        Args:
            separator: Text placed between chunk contents
            preview_chars: Length of citation previews before the marker
            marker: Appended to truncated previews
            max_chars: Optional bound on the context length; chunks that do
                not fit are left out together with their citations
        """
        self.separator = separator
        self.preview_chars = preview_chars
        self.marker = marker
        self.max_chars = max_chars if max_chars is not None else config.MAX_CONTEXT_CHARS

    def assemble(self, results: Sequence[SearchResult]) -> AssembledContext:
        """Build the grounding text and the citations for results.

        Args:
            results: Retriever output, closest first

        Returns:
            AssembledContext; empty text and no citations for no results
        """
        parts: List[str] = []
        citations: List[Citation] = []
        total_chars = 0

        for result in results:
            added = len(result.content) + (len(self.separator) if parts else 0)

            if self.max_chars is not None and total_chars + added > self.max_chars:
                logger.debug(
                    "context_chunk_dropped",
                    chunk_id=result.id,
                    chunk_length=len(result.content),
                    max_chars=self.max_chars,
                )
                continue

            parts.append(result.content)
            total_chars += added
            citations.append(
                Citation(
                    id=result.id,
                    preview=make_preview(result.content, self.preview_chars, self.marker),
                )
            )

        context = AssembledContext(
            context_text=self.separator.join(parts),
            citations=citations,
        )

        logger.debug(
            "context_assembled",
            num_chunks=len(parts),
            total_chars=len(context.context_text),
        )

        return context
