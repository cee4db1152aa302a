"""Shared fixtures for LLM library tests."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest


def _make_response(status: int = 200, body="", reason: str = "OK"):
    response = MagicMock()
    response.status = status
    response.reason = reason
    text = json.dumps(body) if isinstance(body, (dict, list)) else body
    response.text = AsyncMock(return_value=text)
    return response


def _make_context(response):
    context = AsyncMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses; dict bodies are JSON-encoded."""
    return _make_response


@pytest.fixture
def completion():
    """Factory for a chat-completion body carrying `content` as the first choice."""
    return _completion


@pytest.fixture
def mock_http_session():
    """Create a mock aiohttp ClientSession whose post() returns a configurable response."""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()

    def respond_with(response):
        session.post = MagicMock(return_value=_make_context(response))
        return session

    session.respond_with = respond_with
    return session
