"""
HTTP fetcher with an optional on-disk cache and manual redirect handling.

This module provides the retrieval step of the pipeline:
- Cache hits are served from ``<cache_dir>/<url basename>`` with no network access
- Redirects are followed by hand, keeping the original scheme and host
- A redirect hop limit guards against loops
- Per-request timeouts so a stuck source fails instead of hanging the run
- Bounded concurrency when fetching several sources at once
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Optional, Union

import httpx

from core.exceptions import FetchError
from ingestion.sources import Source

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}
USER_AGENT = "covid-modelling-ingest/1.0"


class CachedFetcher:
    """
    Retrieve remote sources as text.

    Use as an async context manager; the underlying ``httpx.AsyncClient`` is
    opened on entry and closed on exit.

    Attributes:
        cache_dir: Directory for cached copies, or None to disable caching
        timeout: Per-request timeout in seconds
        max_redirects: Maximum number of redirects followed for one fetch
        max_concurrency: Maximum simultaneous requests in ``fetch_all``
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        timeout: float = 60.0,
        max_redirects: int = 20,
        max_concurrency: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_concurrency = max_concurrency
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "CachedFetcher":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=False,
            limits=httpx.Limits(max_connections=self.max_concurrency),
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def cache_path(self, url: str) -> Optional[Path]:
        """Cache location for a URL: the basename of its path"""
        if self.cache_dir is None:
            return None
        name = PurePosixPath(httpx.URL(url).path).name
        if not name:
            raise FetchError(
                "Cannot derive a cache file name from URL",
                context={"url": url}
            )
        return self.cache_dir / name

    async def fetch(self, url: str) -> str:
        """
        Return the body of ``url``, from cache when available.

        Raises:
            FetchError: On network errors, timeouts, non-2xx responses or
                too many redirects
        """
        cache_path = self.cache_path(url)
        if cache_path is not None and cache_path.exists():
            logger.info(f"Using cached copy of {url} at {cache_path}")
            try:
                return cache_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise FetchError(
                    "Failed to read cached source",
                    context={"url": url, "cache_path": str(cache_path)},
                    original_exception=e
                )

        body = await self._get_following_redirects(url)

        if cache_path is not None:
            self._write_cache(url, cache_path, body)

        return body

    def _write_cache(self, url: str, cache_path: Path, body: str) -> None:
        """Write through a temporary file so a partial write is never a cache hit"""
        temp_name = None
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=cache_path.parent,
                prefix=f".{cache_path.name}.",
                delete=False
            ) as f:
                temp_name = f.name
                f.write(body)
            os.replace(temp_name, cache_path)
        except OSError as e:
            if temp_name is not None and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise FetchError(
                "Failed to write cached source",
                context={"url": url, "cache_path": str(cache_path)},
                original_exception=e
            )
        logger.debug(f"Cached {url} at {cache_path}")

    async def fetch_all(self, sources: Iterable[Source]) -> Dict[str, str]:
        """
        Fetch several sources concurrently.

        Returns:
            Mapping of source name to raw text

        Raises:
            FetchError: The first fetch failure; remaining fetches are cancelled
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        sources = list(sources)

        async def _bounded(source: Source) -> str:
            async with semaphore:
                logger.info(f"Fetching {source.name} from {source.url}")
                return await self.fetch(source.url)

        tasks = [asyncio.ensure_future(_bounded(source)) for source in sources]
        try:
            bodies = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return {source.name: body for source, body in zip(sources, bodies)}

    async def _get_following_redirects(self, url: str) -> str:
        if self._client is None:
            raise RuntimeError("CachedFetcher must be used as an async context manager")

        current = httpx.URL(url)
        redirects = 0

        while True:
            try:
                response = await self._client.get(current)
            except httpx.TimeoutException as e:
                raise FetchError(
                    f"Request timed out after {self.timeout} seconds",
                    context={"url": str(current)},
                    original_exception=e
                )
            except httpx.HTTPError as e:
                raise FetchError(
                    "Network error while fetching source",
                    context={"url": str(current)},
                    original_exception=e
                )

            if response.status_code not in REDIRECT_STATUS_CODES:
                break

            redirects += 1
            if redirects > self.max_redirects:
                raise FetchError(
                    f"Exceeded {self.max_redirects} redirects",
                    context={"url": url, "redirects": redirects}
                )

            location = response.headers.get("location")
            if not location:
                raise FetchError(
                    "Redirect response without a Location header",
                    context={"url": str(current), "status_code": response.status_code}
                )

            # Keep scheme and host, adopt the target's path and query
            try:
                current = current.copy_with(raw_path=current.join(location).raw_path)
            except httpx.InvalidURL as e:
                raise FetchError(
                    "Invalid redirect Location header",
                    context={"url": str(current), "location": location},
                    original_exception=e
                )
            logger.debug(f"Following redirect {redirects} to {current}")

        if not response.is_success:
            raise FetchError(
                f"Unexpected HTTP status {response.status_code}",
                context={
                    "url": str(current),
                    "status_code": response.status_code,
                    "response_body": response.text[:500]
                }
            )

        return response.text
