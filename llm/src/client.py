"""
LLM Client - chat-completion calls against an OpenAI-compatible endpoint.

One request in, one assistant message out. Error bodies are turned into a
readable TransportError, JSON-mode responses are unfenced and parsed, and
every call can be stopped through a CancellationToken.
"""

import asyncio
import json
import re
import time
from typing import Optional, Sequence

import aiohttp

from shared.logging import get_logger

from .cancellation import CancellationToken
from .errors import ConfigurationError, MalformedResponseError, TransportError
from .models import ChatMessage, ChatOptions

log = get_logger("llm", "client")

DEFAULT_ENDPOINT = "https://api.siliconflow.cn/v1/chat/completions"
DEFAULT_MODEL = "deepseek-ai/DeepSeek-V3"

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")


def strip_code_fences(content: str) -> str:
    """Remove a leading ```json (or ```) marker and a trailing ``` marker."""
    content = _LEADING_FENCE.sub("", content, count=1)
    return _TRAILING_FENCE.sub("", content, count=1)


def parse_json_content(content: str) -> dict:
    """
    Parse a JSON-mode reply.

    Raises:
        MalformedResponseError: Not valid JSON, or not a JSON object
    """
    text = strip_code_fences(content)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}", content=content) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(data).__name__}", content=content
        )
    return data


def extract_error_message(status: int, reason: str, body: str) -> str:
    """
    Best-effort human-readable message for a non-2xx response.

    Tries a top-level `message`, then `error.message`, then the raw body,
    then the status line.
    """
    try:
        data = json.loads(body) if body else None
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

    if body and body.strip():
        return body.strip()
    return f"HTTP Error: {status} {reason or ''}".rstrip()


class ChatCompletionClient:
    """
    Client for one chat-completion endpoint.

    Usage:
        async with ChatCompletionClient(api_key, model) as client:
            text = await client.send(system, user, temperature=0.2)
            data = await client.send_json(system, user, temperature=0.2)
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_seconds: int = 300,
    ):
        """
        Initialize the client.

        Args:
            api_key: Bearer token for the endpoint
            model: Model name sent with every request
            endpoint: Full chat-completions URL
            timeout_seconds: Total timeout per request
        """
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def _get_http_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    async def close(self):
        """Close HTTP session."""
        if self._http_session and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    async def __aenter__(self) -> "ChatCompletionClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def build_payload(self, messages: Sequence[dict], options: ChatOptions) -> dict:
        payload = {"model": self.model, "messages": list(messages)}
        payload.update(options.to_payload())
        return payload

    async def _post(self, payload: dict) -> str:
        """Send one request and return the first choice's content."""
        session = await self._get_http_session()
        start_time = time.time()

        try:
            async with session.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as resp:
                body = await resp.text()

                if resp.status < 200 or resp.status >= 300:
                    message = extract_error_message(resp.status, resp.reason, body)
                    log.warning(
                        "llm.client.http_error",
                        status=resp.status,
                        message=message[:300],
                    )
                    raise TransportError(message, status=resp.status)

        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Request timed out after {self.timeout_seconds} seconds"
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Could not reach {self.endpoint}: {e}") from e

        try:
            data = json.loads(body)
            content = data["choices"][0]["message"]["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                "Response has no choices[0].message.content", content=body[:500]
            ) from e
        if content is None:
            raise MalformedResponseError("Response content is empty", content=body[:500])

        log.debug(
            "llm.client.response",
            model=self.model,
            response_length=len(content),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return content

    async def complete(
        self,
        messages: Sequence[dict],
        options: ChatOptions,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Send an explicit message list.

        Args:
            messages: [{"role": ..., "content": ...}, ...]
            options: Sampling and format options
            token: Cancellation token; raises AbortedError if it fires

        Returns:
            Raw assistant message text (fences stripped in JSON mode)
        """
        if not self.api_key:
            raise ConfigurationError("API key is not configured")

        payload = self.build_payload(messages, options)
        log.info(
            "llm.client.send",
            model=self.model,
            messages=len(payload["messages"]),
            temperature=options.temperature,
            json_mode=options.json_mode,
        )

        if token is None:
            content = await self._post(payload)
        else:
            content = await token.guard(self._post(payload))

        if options.json_mode:
            content = strip_code_fences(content)
        return content

    async def send(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        history: Optional[Sequence[ChatMessage]] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Send [system, *history, user] and return the assistant text."""
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(message.to_api() for message in history or [])
        messages.append({"role": "user", "content": user_prompt})

        options = ChatOptions(
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )
        return await self.complete(messages, options, token=token)

    async def send_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> dict:
        """JSON-mode send; returns the parsed object."""
        content = await self.send(
            system_prompt,
            user_prompt,
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
            json_mode=True,
            token=token,
        )
        return parse_json_content(content)
