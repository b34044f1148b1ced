import logging
import time
from typing import Optional

import openai
from openai import OpenAI

from policy_qa.config import (
    GENERATION_TIMEOUT_SECONDS,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_TEMPERATURE,
)
from policy_qa.errors import DownstreamTimeout, GenerationError
from policy_qa.prompts.prompt_builder import build_answer_prompt
from policy_qa.prompts.system_prompts import UNDERWRITER_SYSTEM_PROMPT


logger = logging.getLogger(__name__)


class LLMClient:
    """
    Client for OpenAI chat completions.

    Generates an answer to a question from an assembled context block.
    """

    def __init__(self, client: Optional[OpenAI] = None, model: str = LLM_MODEL):
        """
        Args:
            client: Preconfigured OpenAI client (reads OPENAI_API_KEY if omitted)
            model: Chat model to use
        """

        try:
            self.client = client or OpenAI(
                timeout=GENERATION_TIMEOUT_SECONDS,
                max_retries=1,
            )

        except openai.OpenAIError as e:
            raise GenerationError(
                "OPENAI_API_KEY environment variable not set or invalid: "
                f"{e}"
            )

        self.model = model

    def generate(self, question: str, context_text: str) -> str:
        """
        Generate a grounded answer.

        Raises:
            DownstreamTimeout: the provider did not answer in time
            GenerationError: any other provider failure or an empty answer
        """

        start = time.time()

        try:

            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": UNDERWRITER_SYSTEM_PROMPT.strip()},
                    {"role": "user", "content": build_answer_prompt(question, context_text)},
                ],
                temperature=LLM_TEMPERATURE,
                max_tokens=LLM_MAX_TOKENS,
            )

        except openai.APITimeoutError:
            logger.error("Generation request timed out", extra={"model": self.model})
            raise DownstreamTimeout("generation", GENERATION_TIMEOUT_SECONDS)

        except openai.OpenAIError as e:
            logger.error(
                "Generation request failed",
                extra={"model": self.model, "error": str(e)},
            )
            raise GenerationError(f"OpenAI API call failed: {e}")

        text = response.choices[0].message.content

        if not text or not text.strip():
            raise GenerationError("OpenAI returned an empty answer")

        logger.info(
            "Generation completed",
            extra={
                "model": self.model,
                "latency_seconds": round(time.time() - start, 3),
                "context_length": len(context_text),
            },
        )

        return text.strip()
