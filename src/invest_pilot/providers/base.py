"""Quote provider protocol and the shared batching/deadline machinery.

Architecture
------------
Each provider receives a mapping of request key -> provider code and returns
a mapping of request key -> positive float:

    {"sh_gold": "nf_AU0"} -> SinaQuoteProvider -> {"sh_gold": 612.4}

Keys missing from the result were not found this cycle. Providers never
raise: network failures, non-2xx responses and malformed bodies all degrade
to "no data" for the affected chunk and are logged.

Adding a feed means subclassing ``BatchQuoteProvider`` and implementing
``_request`` and ``_parse``. The engine only depends on ``QuoteProvider``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import ClassVar, Protocol, runtime_checkable

import httpx

from invest_pilot.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0
DEFAULT_MAX_BATCH_SIZE = 40


@runtime_checkable
class QuoteProvider(Protocol):
    """Consumer-facing interface of a quote feed."""

    @property
    def name(self) -> str: ...

    async def fetch(self, codes: Mapping[str, str]) -> dict[str, float]: ...


class BatchQuoteProvider:
    """Base class for feeds that accept several codes per request.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared client, owned by the caller.
    timeout_seconds : float
        Overall deadline for one ``fetch`` call. Chunks still in flight when
        it expires are cancelled; completed chunks are kept.
    max_batch_size : int
        Maximum codes per request.
    """

    name: ClassVar[str] = "base"
    encoding: ClassVar[str] = "utf-8"

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds
        self._max_batch_size = max_batch_size

    async def fetch(self, codes: Mapping[str, str]) -> dict[str, float]:
        """Fetch quotes for ``codes`` (request key -> provider code)."""
        if not codes:
            return {}
        distinct = sorted(set(codes.values()))
        by_code = await self._collect(self._group(distinct))
        return {key: by_code[code] for key, code in codes.items() if code in by_code}

    def _group(self, codes: Sequence[str]) -> list[list[str]]:
        size = self._max_batch_size
        return [list(codes[i : i + size]) for i in range(0, len(codes), size)]

    async def _collect(self, groups: list[list[str]]) -> dict[str, float]:
        """Run every group concurrently under one deadline."""
        if not groups:
            return {}
        tasks = [asyncio.create_task(self._fetch_group(g)) for g in groups]
        done, pending = await asyncio.wait(tasks, timeout=self._timeout)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "%s: %d of %d requests exceeded the %.1fs deadline",
                self.name, len(pending), len(tasks), self._timeout,
            )

        merged: dict[str, float] = {}
        for task in done:
            exc = task.exception()
            if exc is not None:
                logger.warning("%s: request failed: %s", self.name, exc)
                continue
            merged.update(task.result())
        return merged

    async def _fetch_group(self, group: list[str]) -> dict[str, float]:
        try:
            response = await self._request(group)
            response.raise_for_status()
            return self._parse(self._decode(response), group)
        except httpx.HTTPStatusError as e:
            logger.warning(
                "%s HTTP %s for %d codes",
                self.name, e.response.status_code, len(group),
            )
        except httpx.RequestError as e:
            logger.warning("%s request error: %s", self.name, e)
        except ProviderError as e:
            logger.warning("%s: %s (%s)", self.name, e, e.context)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("%s: malformed response: %s", self.name, e)
        return {}

    def _decode(self, response: httpx.Response) -> str:
        """Decode the body with the feed's declared encoding."""
        return response.content.decode(self.encoding, errors="replace")

    async def _request(self, group: list[str]) -> httpx.Response:
        raise NotImplementedError

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        raise NotImplementedError
