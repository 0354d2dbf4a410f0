"""Short link client used when a referral link is created."""

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from referrals.logging_config import get_logger
from referrals.settings import settings

logger = get_logger(__name__)


class ShortLinkError(Exception):
    """Raised when the provider does not return a short URL."""
    pass


class ShortLinkClient:
    """HTTP client for the link-shortening provider.

    Without a configured provider the canonical URL doubles as the short URL.
    """

    def __init__(
        self,
        provider_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.provider_url = provider_url if provider_url is not None else settings.short_link_provider_url
        self.api_key = api_key if api_key is not None else settings.short_link_api_key
        self.timeout = timeout or settings.request_timeout_seconds
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.provider_url)

    def create_short_link(self, url: str, title: str | None = None) -> str:
        """Shorten a canonical URL.

        Args:
            url: Canonical URL
            title: Optional title stored with the short link

        Returns:
            Short URL

        Raises:
            httpx.HTTPError: If the provider keeps failing
            ShortLinkError: If the response carries no short URL
        """
        if not self.enabled:
            return url

        payload: dict[str, Any] = {"url": url}
        if title:
            payload["title"] = title

        data = self._post(payload)
        short_url = data.get("short_url") or data.get("shortUrl")
        if not short_url:
            raise ShortLinkError(f"Short link provider returned no short URL for '{url}'")

        logger.info("short_link_created", url=url, short_url=short_url)
        return short_url

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
        reraise=True,
    )
    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.debug("short_link_request", provider=self.provider_url)
        if self._client is not None:
            response = self._client.post(self.provider_url, json=payload, headers=headers)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.provider_url, json=payload, headers=headers)

        response.raise_for_status()
        return response.json()


# Singleton instance
short_link_client = ShortLinkClient()
