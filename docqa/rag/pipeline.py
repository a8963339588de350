"""Query path: question -> retrieval -> context -> answer."""
from typing import Optional, Sequence

import structlog

from docqa.errors import InvalidInputError
from docqa.models import ConversationTurn, QueryResponse
from docqa.rag.answer import AnswerSynthesizer
from docqa.rag.context import ContextAssembler
from docqa.rag.retriever import Retriever

logger = structlog.get_logger()


class QueryPipeline:
    """Answers questions from indexed documents.

    Holds no per-query state, so one instance can serve concurrent queries.
    """

    def __init__(
        self,
        retriever: Retriever,
        assembler: ContextAssembler,
        synthesizer: AnswerSynthesizer,
    ):
        self.retriever = retriever
        self.assembler = assembler
        self.synthesizer = synthesizer

    async def ask(
        self,
        question: str,
        limit: Optional[int] = None,
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> QueryResponse:
        """Answer a question with citations.

        Args:
            question: User question
            limit: Number of chunks to retrieve (default from the retriever)
            history: Earlier turns of the caller's conversation

        Returns:
            QueryResponse with answer, citations, sources and the assistant turn

        Raises:
            InvalidInputError: If the question is empty or not a string
            RetrievalError: If embedding or search fails
            SynthesisError: If the answer call fails
        """
        if not isinstance(question, str) or not question.strip():
            raise InvalidInputError("question is required and must be a string")

        logger.info("query_started", question_length=len(question))

        sources = await self.retriever.retrieve(question, limit=limit)
        context = self.assembler.assemble(sources)
        answer = await self.synthesizer.answer(context.context_text, question, history)

        logger.info(
            "query_completed",
            sources_used=len(sources),
            context_length=len(context.context_text),
            answer_length=len(answer),
        )

        return QueryResponse(
            answer=answer,
            citations=context.citations,
            sources=sources,
            turn=ConversationTurn(role="assistant", content=answer, sources=sources),
        )
