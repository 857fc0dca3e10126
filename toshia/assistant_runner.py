"""Conversational fallback for plain-text messages.

Answers non-command messages through any OpenAI-compatible chat
completions endpoint. The dispatcher calls respond(); everything else
here is request plumbing.

Key classes:
    AssistantResponse: Pydantic model wrapping a provider response.
    AssistantRunner: Manages API calls, session lifecycle, and
        response parsing for the configured provider.
"""

import asyncio
from typing import Optional
from urllib.parse import urlparse

import aiohttp
import structlog
from pydantic import BaseModel

from .exceptions import AssistantError, ConfigurationError, ErrorCategory

logger = structlog.get_logger("toshia.assistant")

# Telegram rejects messages longer than 4096 characters
MAX_REPLY_LENGTH = 4000


class AssistantResponse(BaseModel):
    """Structured response from the provider."""

    content: str
    tokens_used: Optional[int] = None
    model: str


class AssistantRunner:
    """Chat-completions client used as the plain-text fallback.

    Args:
        api_url: Full URL to the chat completions endpoint. Must use HTTPS.
        api_key: Bearer token for the provider API.
        model: Model identifier (e.g. "gpt-4o-mini").
        max_tokens: Max tokens per response.
        timeout: Request timeout in seconds.

    Raises:
        ConfigurationError: If api_url is not HTTPS or has no host.
    """

    SYSTEM_PROMPT = (
        "You are Toshia, a friendly assistant living in Telegram chats.\n\n"
        "When responding:\n"
        "- Be concise; replies are read on phones\n"
        "- In group chats, several people may be talking; answer the "
        "message you were given\n"
        "- Mention that commands are listed with /help when someone asks "
        "what you can do\n"
        "- Keep responses under 4000 characters"
    )

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        timeout: int = 60,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

        parsed = urlparse(self.api_url)
        if parsed.scheme != "https":
            raise ConfigurationError(
                "Assistant API URL must use HTTPS", setting_name="assistant.api_url",
            )
        if not parsed.hostname:
            raise ConfigurationError(
                "Assistant API URL must have a valid hostname",
                setting_name="assistant.api_url",
            )
        logger.info("assistant_api_configured", host=parsed.hostname, model=model)

        if not self.api_key:
            logger.warning("assistant_api_key_not_found")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create a shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the shared HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _build_payload(self, text: str, chat_type: str) -> dict:
        """Build the OpenAI-compatible API payload."""
        system = f"{self.SYSTEM_PROMPT}\n\nThis is a {chat_type} chat."
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": text},
            ],
            "temperature": 0.7,
            "max_tokens": self.max_tokens,
        }

    def _parse_response(self, data: dict) -> Optional[AssistantResponse]:
        """Parse an OpenAI-compatible response. None if malformed or empty."""
        choices = data.get("choices")
        if not choices or not isinstance(choices, list):
            logger.error("assistant_malformed_response", data_keys=list(data.keys()))
            return None

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            logger.warning("assistant_empty_response")
            return None

        usage = data.get("usage", {})
        return AssistantResponse(
            content=content,
            tokens_used=usage.get("total_tokens") if usage else None,
            model=data.get("model", self.model),
        )

    async def _make_request(self, payload: dict) -> Optional[AssistantResponse]:
        """Execute an API request.

        Returns:
            The parsed response, or None when the provider answered with
            no usable content.

        Raises:
            AssistantError: On missing key, HTTP error, timeout, or
                network failure.
        """
        if not self.api_key:
            raise AssistantError(
                "Assistant API key is not configured",
                category=ErrorCategory.INFRASTRUCTURE,
            )

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            session = await self._get_session()
            async with session.post(
                self.api_url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    logger.error(
                        "assistant_api_error", status=resp.status, error=error_text[:500],
                    )
                    raise AssistantError(
                        f"Assistant API returned status {resp.status}",
                        status=resp.status,
                    )
                data = await resp.json()
        except asyncio.TimeoutError as e:
            logger.warning("assistant_timeout", timeout=self.timeout)
            raise AssistantError("Assistant request timed out") from e
        except aiohttp.ClientError as e:
            raise AssistantError(f"Assistant request failed: {e}") from e

        parsed = self._parse_response(data)
        if parsed is not None:
            logger.info(
                "assistant_response_success",
                length=len(parsed.content),
                tokens_used=parsed.tokens_used,
                model=parsed.model,
            )
        return parsed

    async def respond(self, text: str, chat_type: str) -> Optional[str]:
        """Answer a plain-text message.

        Args:
            text: The user's message.
            chat_type: Telegram chat type ("private", "group", ...).

        Returns:
            Reply text, or None if the provider had nothing to say.

        Raises:
            AssistantError: If the request fails.
        """
        result = await self._make_request(self._build_payload(text, chat_type))
        if result is None:
            return None

        content = result.content
        if len(content) > MAX_REPLY_LENGTH:
            content = content[:MAX_REPLY_LENGTH] + "\n\n[Response truncated...]"
        return content
