"""Completion client over an Azure OpenAI chat deployment.

One attempt per call. Any non-success answer from the provider is raised as
ProviderError carrying the status code and response body; retry policy, if
any, belongs to the caller.
"""

import os
from typing import Sequence

import structlog
from httpx import HTTPStatusError
from langchain_openai import AzureChatOpenAI
from openai import APIConnectionError, APIStatusError

from kumulus.core.message_builder import ProviderMessage, to_langchain

logger = structlog.get_logger(__name__)


class ProviderError(Exception):
    """The completion provider failed or returned no content."""

    def __init__(self, status_code: int | None, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Completion provider error (status {status_code}): {body}")


class LLMAdapter:
    """Wraps a LangChain AzureChatOpenAI model configured from the environment."""

    def __init__(self):
        self.endpoint = os.environ.get("AZURE_OPENAI_ENDPOINT", "")
        self.api_key = os.environ.get("AZURE_OPENAI_KEY", "")
        self.deployment_name = os.environ.get("AZURE_OPENAI_DEPLOYMENT_NAME", "gpt-4o-mini")
        self.api_version = os.environ.get("AZURE_OPENAI_API_VERSION", "2024-10-21")

        self.max_tokens = int(os.environ.get("LLM_MAX_TOKENS", "1000"))
        self.title_max_tokens = int(os.environ.get("TITLE_MAX_TOKENS", "10"))
        self.timeout = int(os.environ.get("LLM_TIMEOUT", "60"))
        temperature = os.environ.get("LLM_TEMPERATURE")

        if not self.endpoint:
            raise ValueError("AZURE_OPENAI_ENDPOINT is empty.")
        if not self.api_key:
            raise ValueError("AZURE_OPENAI_KEY is empty.")

        self.llm = AzureChatOpenAI(
            azure_endpoint=self.endpoint,
            api_key=self.api_key,
            azure_deployment=self.deployment_name,
            api_version=self.api_version,
            temperature=float(temperature) if temperature else None,
            timeout=self.timeout,
            max_retries=0,
        )

    def complete(self, messages: Sequence[ProviderMessage], max_tokens: int | None = None) -> str:
        """Send one message list and return the assistant's text.

        Args:
            messages: Ordered provider messages (system first).
            max_tokens: Completion budget. Defaults to LLM_MAX_TOKENS.

        Returns:
            Assistant message content.

        Raises:
            ProviderError: On a non-success response, a transport failure, or empty content.
        """
        budget = max_tokens or self.max_tokens
        logger.debug("llm.invoke", model=self.deployment_name, messages=len(messages), max_tokens=budget)

        try:
            response = self.llm.invoke(to_langchain(messages), max_tokens=budget)

        except APIStatusError as e:
            logger.error("llm.provider_error", status=e.status_code)
            raise ProviderError(e.status_code, e.response.text) from e

        except HTTPStatusError as e:
            logger.error("llm.provider_error", status=e.response.status_code)
            raise ProviderError(e.response.status_code, e.response.text) from e

        except APIConnectionError as e:
            logger.error("llm.connection_failed", error=str(e))
            raise ProviderError(None, str(e)) from e

        text = _content_text(response.content)
        if not text:
            logger.error("llm.empty_content", model=self.deployment_name)
            raise ProviderError(200, "Completion returned no content.")
        return text


def _content_text(content) -> str:
    """Flatten AIMessage content (str or list of parts) to plain text."""
    if isinstance(content, str):
        return content
    texts = []
    for part in content or []:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            texts.append(part.get("text", ""))
    return "".join(texts)
