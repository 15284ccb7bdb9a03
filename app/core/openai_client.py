from typing import Optional

from openai import AsyncOpenAI
from app.core.config import settings


class OpenAIClientSingleton:
    """
    Singleton holder for the completion endpoint client.

    The client is built lazily so that importing the pipeline never
    requires an API key (tests inject their own client).
    """
    _instance = None
    _client: Optional[AsyncOpenAI] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(OpenAIClientSingleton, cls).__new__(cls)
        return cls._instance

    @property
    def client(self) -> AsyncOpenAI:
        """Returns the OpenAI async client instance."""
        if self._client is None:
            type(self)._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY or "not-configured",
                max_retries=0,  # retries are handled by CompletionClient
            )
        return self._client


def get_openai_client() -> AsyncOpenAI:
    return OpenAIClientSingleton().client
