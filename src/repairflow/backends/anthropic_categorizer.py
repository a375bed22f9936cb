"""Categorization service backed by the Anthropic API.

Sends one user message per question and returns the text answer. Missing
credentials and empty answers mean "no decision" (None). API failures are
raised as classified ``PlaybookError`` subclasses so the retry policy can
tell a timeout from a rejected key.
"""

from __future__ import annotations

import os

import anthropic

from repairflow.backends.base import Categorizer
from repairflow.core.config import CategorizerConfig
from repairflow.core.errors import (
    AuthenticationError,
    NotFoundError,
    PlatformNetworkError,
    PlatformTimeoutError,
    PlatformUnavailableError,
    PlaybookError,
)
from repairflow.core.logging import get_logger

_logger = get_logger("backend.anthropic")


class AnthropicCategorizer(Categorizer):
    """Ask a Claude model to pick among catalog options."""

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key_env: str = "ANTHROPIC_API_KEY",
        max_tokens: int = 100,
        timeout_seconds: float = 30.0,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        """Initialize the categorizer.

        Args:
            model: Model ID to query.
            api_key_env: Environment variable containing the API key.
            max_tokens: Answer length cap; answers are a single option label.
            timeout_seconds: Per-request timeout.
            client: Pre-built client, mainly for tests.
        """
        self.model = model
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self._api_key = os.environ.get(api_key_env)
        self._client = client
        self._warned_no_key = False

    @classmethod
    def from_config(cls, config: CategorizerConfig) -> AnthropicCategorizer:
        return cls(
            model=config.model,
            api_key_env=config.api_key_env,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
            )
        return self._client

    async def ask(self, prompt: str) -> str | None:
        if not self.available:
            if not self._warned_no_key:
                _logger.warning("categorizer.api_key_missing", env=self.api_key_env)
                self._warned_no_key = True
            return None

        client = self._get_client()
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise PlatformTimeoutError(f"Categorizer timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise PlatformNetworkError(f"Categorizer connection error: {e}") from e
        except anthropic.AuthenticationError as e:
            raise AuthenticationError(f"Categorizer authentication failed: {e}") from e
        except anthropic.RateLimitError as e:
            raise PlaybookError(f"Categorizer rate limited: {e}", retryable=True) from e
        except anthropic.InternalServerError as e:
            raise PlatformUnavailableError(f"Categorizer unavailable: {e}") from e
        except anthropic.PermissionDeniedError as e:
            raise AuthenticationError(f"Categorizer permission denied: {e}") from e
        except anthropic.NotFoundError as e:
            raise NotFoundError(f"Categorizer model not found: {e}") from e
        except anthropic.APIStatusError as e:
            raise PlaybookError(
                f"Categorizer rejected request ({e.status_code}): {e}", retryable=False
            ) from e

        text = "".join(
            block.text for block in response.content if hasattr(block, "text")
        ).strip()
        if not text:
            _logger.info("categorizer.empty_answer", model=self.model)
            return None

        _logger.debug("categorizer.answered", model=self.model, answer=text[:80])
        return text


__all__ = ["AnthropicCategorizer"]
