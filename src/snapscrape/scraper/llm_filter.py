"""LLM-based markdown clean-up through an OpenAI-compatible chat endpoint.

The filter sends extracted markdown to a chat completions API and asks for
a cleaned-up markdown version with ads and irrelevant content removed.
The caller treats it as an opaque text transformation.

Error handling maps failures to :class:`~snapscrape.core.exceptions.LLMFilterError`:

- Non-2xx responses (status code kept on the exception)
- Network errors
- Responses without a message body
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from snapscrape.core.exceptions import LLMFilterError

logger = logging.getLogger(__name__)

FILTER_PROMPT_TEMPLATE: str = """\
You are an AI assistant that converts webpage content to markdown while filtering out unnecessary information. Please follow these guidelines:
Remove any inappropriate content, ads, or irrelevant information
If unsure about including something, err on the side of keeping it
Answer in English. Include all points in markdown in sufficient detail to be useful.
Aim for clean, readable markdown.
Return the markdown and nothing else.
Input: {content}
Output:
```markdown
"""

_FENCE_RE = re.compile(r"^\s*```(?:markdown)?\s*\n?|\n?```\s*$")


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


class LLMFilter:
    """Best-effort content filter backed by a chat completions endpoint.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        api_url: Chat completions URL.
        api_key: Bearer key.  When ``None`` the filter returns its input.
        model: Model identifier.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str,
        api_key: str | None,
        model: str,
        timeout: float = 60.0,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def filter(self, markdown: str) -> str:
        """Return a cleaned-up version of ``markdown``.

        Raises:
            LLMFilterError: On HTTP errors, network errors, or an empty reply.
        """
        if not self.enabled:
            logger.warning("LLM filter requested but no API key is configured")
            return markdown

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "user", "content": FILTER_PROMPT_TEMPLATE.format(content=markdown)},
            ],
            "temperature": 0,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(
                self._api_url, json=payload, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise LLMFilterError(
                f"llm filter: HTTP {code} — {exc.response.text[:200]}",
                status_code=code,
            ) from exc
        except httpx.RequestError as exc:
            raise LLMFilterError(f"llm filter: network error — {exc}") from exc

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMFilterError(f"llm filter: malformed response — {exc}") from exc
        if not content:
            raise LLMFilterError("llm filter: empty response")

        return _strip_fences(content)
