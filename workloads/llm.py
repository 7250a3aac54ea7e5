"""Chat-completions client used by the recommendation worker."""

import logging
from typing import Any, Dict, Optional

import httpx

from donation_core.errors import ModelError


logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """
    Minimal client for an OpenAI-compatible chat-completions endpoint.

    One call, one request: failures are raised as ModelError and never
    retried here.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.7,
        max_tokens: int = 800,
        timeout_s: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_s,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def request_body(self, system: str, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def complete_json(self, system: str, prompt: str) -> str:
        """Send one chat request and return the raw JSON text of the answer."""
        logger.info("Calling model %s", self.model)
        try:
            response = self._client.post("/chat/completions", json=self.request_body(system, prompt))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:400]
            raise ModelError(
                f"Model request failed with status {exc.response.status_code}: {detail}"
            ) from exc
        except httpx.RequestError as exc:
            raise ModelError(f"Model request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelError("Model returned a non-JSON response") from exc
        return extract_content(payload)


def extract_content(payload: Any) -> str:
    """Pull the assistant message text out of a chat-completions response."""
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ModelError("Model response missing choices")

    message = choices[0].get("message") or {}
    content = message.get("content")

    if isinstance(content, str):
        text = content.strip()
    elif isinstance(content, list):
        parts = [
            item["text"] for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        text = "".join(parts).strip()
    else:
        text = ""

    if not text:
        raise ModelError("Model response content is empty")
    return text
