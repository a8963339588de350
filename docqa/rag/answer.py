"""Answer synthesis over assembled context."""
from typing import List, Optional, Sequence

import structlog

from docqa.errors import SynthesisError
from docqa.models import ChatModel, ConversationTurn

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the question using the information "
    "provided. If the information does not contain the answer, say so."
)


def build_user_message(context_text: str, question: str) -> str:
    return f"Information:\n{context_text}\n\nQuestion: {question}"


class AnswerSynthesizer:
    """Asks a chat model to answer a question grounded in context."""

    def __init__(
        self,
        client: ChatModel,
        model: Optional[str] = None,
        system_prompt: str = SYSTEM_PROMPT,
        temperature: Optional[float] = None,
    ):
        self.client = client
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature

    def build_messages(
        self,
        context_text: str,
        question: str,
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> List[dict]:
        messages = [{"role": "system", "content": self.system_prompt}]
        # Prior turns go in as plain role/content pairs, without sources
        for turn in history or []:
            messages.append({"role": turn.role, "content": turn.content})
        messages.append({"role": "user", "content": build_user_message(context_text, question)})
        return messages

    async def answer(
        self,
        context_text: str,
        question: str,
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> str:
        """Return the model's answer text.

        Raises:
            SynthesisError: If the chat call fails or returns no content
        """
        messages = self.build_messages(context_text, question, history)

        data = await self.client.chat(
            messages, model=self.model, temperature=self.temperature
        )
        content = (data.get("message") or {}).get("content")

        if not isinstance(content, str) or not content:
            logger.error("empty_answer_returned", model=self.model)
            raise SynthesisError("Chat model returned an empty answer")

        return content
