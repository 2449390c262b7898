"""HTTP retrieval of the aggregator's episode list and OPML document.

Each call issues a single GET bounded by its own timeout. Failures are
raised as FetchError and never retried here; the next scheduled sync is
the retry.
"""

import json
from typing import Any

import httpx
import structlog

from podroll.ingestion.normalizer import ParseError

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = "Podroll/1.0"


class FetchError(Exception):
    """Raised when a remote fetch times out or returns a non-2xx status."""

    def __init__(
        self,
        message: str,
        stage: str,
        status: int | None = None,
        cause: str = "http",
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.status = status
        self.cause = cause


class RemoteFetcher:
    """Fetches raw episode and source payloads from the aggregator."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            user_agent: User-Agent header sent with every request.
            transport: Optional httpx transport (used by tests).
        """
        self.user_agent = user_agent
        self.transport = transport
        self.logger = logger.bind(component="fetcher")

    async def fetch_episodes(
        self, url: str, timeout_ms: int, requested_count: int
    ) -> list[dict[str, Any]]:
        """Fetch the greader item list.

        Args:
            url: Episode list endpoint.
            timeout_ms: Request timeout in milliseconds.
            requested_count: Page size hint sent as the ``nb`` parameter;
                the aggregator's default page is far smaller.

        Returns:
            The raw ``items`` array (empty if the payload has none).

        Raises:
            FetchError: On timeout, network failure or non-2xx status.
            ParseError: If the body is not a JSON object.
        """
        self.logger.info("Fetching episodes", url=url, count=requested_count)
        response = await self._get(
            url,
            timeout_ms,
            stage="episodes",
            accept="application/json",
            params={"nb": requested_count},
        )

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Malformed episode JSON: {e}") from e

        if not isinstance(data, dict):
            raise ParseError("Episode payload is not a JSON object")

        items = data.get("items") or []
        if not isinstance(items, list):
            raise ParseError("Episode payload 'items' is not a list")

        self.logger.info("Fetched episodes", count=len(items))
        return items

    async def fetch_sources(self, url: str, timeout_ms: int) -> str:
        """Fetch the OPML document as text.

        Raises:
            FetchError: On timeout, network failure or non-2xx status.
        """
        self.logger.info("Fetching OPML", url=url)
        response = await self._get(
            url, timeout_ms, stage="sources", accept="application/xml, text/xml"
        )
        return response.text

    async def _get(
        self,
        url: str,
        timeout_ms: int,
        stage: str,
        accept: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {"User-Agent": self.user_agent, "Accept": accept}

        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(url, params=params, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError("timeout", stage=stage, cause="timeout") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise FetchError(
                f"HTTP {status}: {e.response.reason_phrase}", stage=stage, status=status
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(str(e) or type(e).__name__, stage=stage, cause="network") from e
        except (httpx.InvalidURL, ValueError) as e:
            raise FetchError(f"Invalid URL: {e}", stage=stage, cause="network") from e

        return response
