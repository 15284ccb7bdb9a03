"""
AI Completion Client
====================
One place where the pipeline talks to the completion endpoint.

- Every call is bounded by AI_TIMEOUT_SECONDS
- Rate limits, 5xx answers, connection drops, timeouts and empty answers
  are retried with exponential backoff
- When a model keeps failing, the next model in the chain is tried
- Other 4xx answers fail immediately
"""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError

from app.core.config import settings
from app.core.exceptions import AIInvocationError, AITimeout, PipelineCancelled
from app.core.openai_client import get_openai_client

logger = logging.getLogger(__name__)


class CompletionClient:
    """Timeout, retry and model-fallback wrapper around chat completions"""

    def __init__(
        self,
        client: Any = None,
        *,
        models: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        temperature: Optional[float] = None,
    ):
        self._client = client
        self.models = models or settings.model_chain
        self.timeout = timeout if timeout is not None else settings.AI_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.AI_MAX_RETRIES)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.AI_RETRY_BASE_DELAY
        )
        self.temperature = temperature if temperature is not None else settings.TEMPERATURE

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        max_tokens: Optional[int] = None,
        context: Any = None,
    ) -> str:
        """
        Run one completion and return the raw answer text.

        Args:
            system_prompt: Instructions for the model
            user_prompt: Prompt body (document text, extracted data)
            json_mode: Ask the endpoint for a JSON object answer
            max_tokens: Answer budget, defaults to MAX_TOKENS
            context: Pipeline context; once cancelled no further call is submitted

        Raises:
            AITimeout: Last failure was a timeout
            AIInvocationError: Non-retriable failure, or retries exhausted on every model
            PipelineCancelled: The pipeline was cancelled before a call was submitted
        """
        last_error: Optional[AIInvocationError] = None

        for model in self.models:
            for attempt in range(self.max_retries):
                if context is not None and context.cancelled:
                    raise PipelineCancelled("Cancelled before AI call submission")

                try:
                    content = await self._invoke(model, system_prompt, user_prompt, json_mode, max_tokens)
                    if attempt or model != self.models[0]:
                        logger.info(f"✅ {model} answered on attempt {attempt + 1}")
                    return content
                except AIInvocationError as e:
                    last_error = e
                    if e.status_code == 404:
                        logger.warning(f"⚠️  Model {model} unavailable, moving to next model")
                        break
                    if not e.retriable:
                        logger.error(f"❌ {model} failed (not retriable): {e}")
                        raise
                    logger.warning(
                        f"⚠️  {model} attempt {attempt + 1}/{self.max_retries} failed: {e}"
                    )
                    if attempt < self.max_retries - 1:
                        await self._wait_before_retry(attempt)

            logger.warning(f"⚠️  Giving up on {model}")

        if last_error is None:
            raise AIInvocationError("No completion model configured")
        logger.error(f"❌ All models failed: {', '.join(self.models)}")
        raise last_error

    async def _invoke(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool,
        max_tokens: Optional[int],
    ) -> str:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens or settings.MAX_TOKENS,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        logger.info(f"🤖 Calling {model} (timeout {self.timeout:.0f}s)")
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**kwargs),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, APITimeoutError) as e:
            raise AITimeout(self.timeout) from e
        except APIConnectionError as e:
            raise AIInvocationError(f"Connection error: {e}", retriable=True) from e
        except APIStatusError as e:
            status = e.status_code
            raise AIInvocationError(
                f"Completion endpoint returned {status}",
                status_code=status,
                retriable=status == 429 or status >= 500,
            ) from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise AIInvocationError("Completion endpoint returned an empty answer", retriable=True)
        return content

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait with a little jitter."""
        wait_time = self.retry_base_delay * (2 ** attempt)
        if wait_time > 0:
            wait_time += random.uniform(0, self.retry_base_delay / 2)
            await asyncio.sleep(wait_time)


# Global completion client
completion_client = CompletionClient()
