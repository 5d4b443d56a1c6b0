"""Thin client for calling the local Ollama chat API."""

import time
import requests

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="ollama_client")


class OllamaClient:
    """Minimal client for the Ollama chat API."""
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "phi4-mini",
        options: dict | None = None,
        *,
        timeout: float = 60.0,
        max_retries: int = 1,
        retry_backoff_sec: float = 0.5,
    ):
        self.url = f"{str(base_url).rstrip('/')}/api/chat"
        self.model = model
        self.options = options or {}
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_sec = retry_backoff_sec

    @classmethod
    def from_settings(cls, settings) -> "OllamaClient":
        return cls(
            settings.ollama_base_url,
            settings.ollama_model,
            settings.ollama_options,
            timeout=settings.ollama_timeout_seconds,
        )

    def chat(self, messages):
        """Send a chat request and return the assistant content; raises RuntimeError on failure."""
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": self.options,
        }

        last_error = None
        response = None
        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(self.url, json=payload, timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                last_error = exc
                logger.warning("Ollama POST failed on attempt %d: %s", attempt + 1, exc)
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff_sec)
                    continue
                raise RuntimeError(f"Ollama POST failed after retries: {exc}") from exc

            if response.status_code == 200:
                break

            error_text = (response.text or "")[:200]
            if response.status_code >= 500 and attempt < self.max_retries:
                logger.warning("Ollama returned %d; retrying (attempt %d/%d).",
                               response.status_code, attempt + 1, self.max_retries + 1)
                time.sleep(self.retry_backoff_sec)
                continue
            raise RuntimeError(
                f"Ollama POST failed with status {response.status_code}: {error_text} "
                f"(model={self.model}, url={self.url})"
            )
        else:
            raise RuntimeError(f"Ollama POST failed after retries: {last_error}")

        logger.info("Ollama POST took %.2fs", response.elapsed.total_seconds())
        try:
            data = response.json()
        except ValueError as exc:
            raise RuntimeError(f"Ollama returned non-JSON response: {response.text[:200]}") from exc
        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise RuntimeError(f"Ollama response has no message object: {response.text[:200]}")
        content = message.get("content", "")
        if isinstance(content, (dict, list)):
            content = str(content)
        return content
