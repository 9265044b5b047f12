"""
OpenAI chat completions client for summaries, evaluation and suggestions.

Supports:
- One system/user prompt pair per call, full text returned
- Connection pooling for reduced latency
- Non-200 responses and empty completions raised as LLMError so that each
  caller can degrade to its own fallback value
"""

import asyncio
import logging
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the provider call fails or returns no usable text."""


class OpenAIClient:
    """
    Manages HTTP access to the OpenAI chat completions API.

    Features:
    - Persistent HTTP connection pool shared by every session
    - Per-call model, temperature and max_tokens
    - No retries; callers convert LLMError to their own fallback
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
        timeout_s: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.organization_id = organization_id
        self.project_id = project_id
        self.timeout_s = timeout_s

        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent aiohttp session with connection pooling."""
        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(
                    limit=20,
                    ttl_dns_cache=300,
                    keepalive_timeout=120,
                )
                timeout = aiohttp.ClientTimeout(
                    total=self.timeout_s,
                    connect=5,
                )
                self._session = aiohttp.ClientSession(
                    connector=connector,
                    timeout=timeout
                )
                logger.info("Created persistent OpenAI session with connection pooling")
        return self._session

    async def close(self):
        """Close persistent session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed OpenAI persistent session")

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.organization_id:
            headers["OpenAI-Organization"] = self.organization_id
        if self.project_id:
            headers["OpenAI-Project"] = self.project_id
        return headers

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int = 512,
        temperature: float = 0.2,
    ) -> str:
        """
        Run one chat completion and return the assistant text.

        Args:
            system_prompt: System message (omitted when empty)
            user_prompt: User message
            model: Model name
            max_tokens: Completion token limit
            temperature: Sampling temperature

        Returns:
            Stripped completion text

        Raises:
            LLMError: On HTTP error status, network failure or empty output
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        session = await self._get_session()
        start_time = asyncio.get_running_loop().time()
        try:
            async with session.post(
                self.completions_url,
                headers=self._headers(),
                json=payload
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"OpenAI API error {response.status}: {error_text[:200]}")
                    raise LLMError(f"OpenAI API error {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise LLMError(f"OpenAI network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise LLMError(f"OpenAI request timed out after {self.timeout_s}s") from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("OpenAI response missing completion content") from e

        content = content.strip()
        if not content:
            raise LLMError("OpenAI returned an empty completion")

        elapsed = int((asyncio.get_running_loop().time() - start_time) * 1000)
        usage = data.get("usage") or {}
        logger.info(
            f"LLM completion: model={model}, {len(content)} chars, "
            f"tokens={usage.get('total_tokens', '?')}, {elapsed}ms"
        )
        return content
