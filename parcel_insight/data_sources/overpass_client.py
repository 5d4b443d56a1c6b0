"""HTTP client for Overpass-style POI queries."""
from __future__ import annotations

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from parcel_insight.errors import ExternalSourceError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="overpass_client")

SOURCE_NAME = "overpass"


class _TransientOverpassError(Exception):
    """429/5xx answer worth retrying."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code


class OverpassClient:
    """POST Overpass QL and return the decoded JSON document.

    Transport errors, 429 and 5xx responses are retried with exponential
    backoff; anything still failing surfaces as :class:`ExternalSourceError`.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        attempts: int = 3,
        user_agent: str = "parcel-insight",
        backoff_multiplier: float = 2.0,
        backoff_max: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.attempts = max(1, int(attempts))
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self._post_with_retry = retry(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=backoff_multiplier, min=0, max=backoff_max),
            retry=retry_if_exception_type((_TransientOverpassError, requests.exceptions.RequestException)),
            reraise=True,
        )(self._post)

    @classmethod
    def from_settings(cls, settings) -> "OverpassClient":
        return cls(
            settings.overpass_url,
            timeout=settings.overpass_timeout_seconds,
            attempts=settings.overpass_attempts,
            user_agent=settings.user_agent,
        )

    def _post(self, query: str) -> dict:
        response = self.session.post(
            self.url,
            data={"data": query},
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
        )
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("Overpass returned retryable status", extra={"status": response.status_code})
            raise _TransientOverpassError(response.status_code, (response.text or "")[:200])
        if response.status_code != 200:
            raise ExternalSourceError(
                SOURCE_NAME,
                f"HTTP {response.status_code}: {(response.text or '')[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalSourceError(SOURCE_NAME, "non-JSON response", status_code=200) from exc

    def query(self, query: str) -> dict:
        """Run one Overpass QL query; raises ExternalSourceError on failure."""
        logger.debug("Overpass query", extra={"query": query})
        try:
            return self._post_with_retry(query)
        except _TransientOverpassError as exc:
            raise ExternalSourceError(SOURCE_NAME, str(exc), status_code=exc.status_code) from exc
        except requests.exceptions.RequestException as exc:
            raise ExternalSourceError(SOURCE_NAME, f"request failed: {exc}") from exc
