"""Cast feed API client with cursor pagination."""
import logging
from typing import AsyncGenerator, Optional, Sequence

import httpx
import tenacity

from .config import settings


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class FeedAPIError(Exception):
    """Feed API error."""
    def __init__(self, status_code: int, message: str, response: dict = None):
        self.status_code = status_code
        self.message = message
        self.response = response or {}
        super().__init__(f"Feed API {status_code}: {message}")


class FeedContractError(Exception):
    """A feed page did not have the expected shape."""
    pass


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, FeedAPIError):
        return exc.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    """Log retry attempts for debugging."""
    logger.warning(
        f"Retry attempt {retry_state.attempt_number} after "
        f"{retry_state.outcome.exception() if retry_state.outcome else 'unknown error'}"
    )


class FeedClient:
    """Recent-casts feed client.

    Pages are requested strictly one after another, each with the cursor the
    previous page returned. Casts from accounts whose username carries a
    spam marker are dropped page by page.
    """

    def __init__(
        self,
        base_url: str = None,
        api_token: str = None,
        feed_path: str = None,
        page_size: int = None,
        spam_markers: Optional[Sequence[str]] = None,
        timeout: float = None,
        retry_attempts: int = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.feed_path = feed_path or settings.feed_path
        self.page_size = page_size or settings.feed_page_size
        self.spam_markers = tuple(
            spam_markers if spam_markers is not None else settings.spam_username_markers
        )
        self.retry_attempts = retry_attempts or settings.request_retry_attempts
        self.retry_wait = tenacity.wait_exponential(multiplier=1, min=2, max=30)

        api_token = api_token if api_token is not None else settings.feed_api_token
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self.client = httpx.AsyncClient(
            base_url=base_url or settings.feed_base_url,
            headers=headers,
            timeout=timeout or settings.feed_timeout_seconds,
            transport=transport
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _send(self, endpoint: str, params: dict) -> dict:
        response = await self.client.get(endpoint, params=params)

        if response.status_code != 200:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": response.text}
            raise FeedAPIError(response.status_code, str(error_data), error_data)

        try:
            return response.json()
        except ValueError as exc:
            raise FeedContractError(f"Feed page is not JSON: {exc}") from exc

    async def _request(self, endpoint: str, params: dict) -> dict:
        """GET a feed page, retrying rate limits and transient failures."""
        async for attempt in tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.retry_attempts),
            wait=self.retry_wait,
            retry=tenacity.retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._send(endpoint, params)

    def _is_spam(self, cast: dict) -> bool:
        username = (cast.get("author") or {}).get("username") or ""
        return any(marker in username for marker in self.spam_markers)

    async def paginate_casts(self) -> AsyncGenerator[tuple[list[dict], str, str], None]:
        """
        Paginate through the recent-casts feed.
        Yields: (casts, cursor_in, cursor_out)
        """
        cursor = ""

        while True:
            params = {"limit": self.page_size}
            if cursor:
                params["cursor"] = cursor

            cursor_in = cursor
            data = await self._request(self.feed_path, params)

            result = data.get("result") if isinstance(data, dict) else None
            raw_casts = result.get("casts") if isinstance(result, dict) else None
            if not isinstance(raw_casts, list):
                raise FeedContractError(f"No casts found in feed page (cursor={cursor_in or None})")

            casts = [c for c in raw_casts if not self._is_spam(c)]
            cursor_out = (data.get("next") or {}).get("cursor") or ""

            yield (casts, cursor_in, cursor_out)

            if not cursor_out:
                break

            cursor = cursor_out

    async def fetch_casts(self, limit: Optional[int] = None) -> list[dict]:
        """Collect feed pages until the cursor runs out or ``limit`` casts are gathered."""
        all_casts: list[dict] = []
        pages = 0

        page_iter = self.paginate_casts()
        try:
            async for casts, cursor_in, cursor_out in page_iter:
                pages += 1
                all_casts.extend(casts)
                logger.debug(f"Page {pages}: {len(casts)} casts ({len(all_casts)} total)")

                if limit and len(all_casts) >= limit:
                    break
        finally:
            await page_iter.aclose()

        if limit:
            all_casts = all_casts[:limit]

        logger.info(f"Fetched {len(all_casts)} casts over {pages} pages")
        return all_casts
