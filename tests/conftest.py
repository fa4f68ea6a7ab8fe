"""Shared fixtures for all tests."""

import base64

import pytest

from kumulus.agent.prompts import TITLE_PROMPT
from kumulus.core.database import init_db
from kumulus.core.llm_adapter import ProviderError


class FakeLLM:
    """Stands in for LLMAdapter: records every call and answers from a script.

    Title calls (system message == TITLE_PROMPT) return `title`; primary calls
    pop from `answers`. `on_primary` runs before a primary call returns, which
    lets a test interleave a second turn mid-flight.
    """

    def __init__(self, answers=None, title="Cloud storage basics", title_error=None,
                 primary_error=None, on_primary=None):
        self.answers = list(answers or ["Hello from LeIA."])
        self.title = title
        self.title_error = title_error
        self.primary_error = primary_error
        self.on_primary = on_primary
        self.max_tokens = 1000
        self.title_max_tokens = 10
        self.title_calls = []
        self.primary_calls = []

    def complete(self, messages, max_tokens=None):
        if messages and messages[0].content == TITLE_PROMPT:
            self.title_calls.append((list(messages), max_tokens))
            if self.title_error:
                raise self.title_error
            return self.title

        self.primary_calls.append((list(messages), max_tokens))
        if self.primary_error:
            raise self.primary_error
        if self.on_primary:
            hook, self.on_primary = self.on_primary, None
            hook()
        return self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]


@pytest.fixture
def memory_db():
    """Fresh in-memory transcript store."""
    init_db("sqlite:///:memory:")
    yield


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def make_llm():
    """Factory for FakeLLM instances with custom behaviour."""
    return FakeLLM


@pytest.fixture
def provider_failure() -> ProviderError:
    return ProviderError(429, '{"error": {"code": "429", "message": "Rate limit reached"}}')


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A few bytes that start like a JPEG file."""
    return b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01"


@pytest.fixture
def jpeg_data_uri(jpeg_bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode("ascii")
