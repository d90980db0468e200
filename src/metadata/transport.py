"""Network transports: fetch bytes by identifier, or fail.

The core never talks to the network directly; a transport is injected into
the metadata provider and the installer. Identifiers are URLs; ``file://``
URLs and plain filesystem paths are read from disk.
"""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional, Protocol, Union

import aiohttp
import requests

from constants import Constants
from common.errors import TransportError
from common.http_client import robust_get
from common.logging_utils import safe_url

logger = logging.getLogger(__name__)

FetchResult = Union[bytes, TransportError]


class Transport(Protocol):
    """Capability the core needs from the network."""

    def fetch(self, identifier: str, timeout: float) -> bytes:
        ...

    def fetch_many(self, identifiers: Iterable[str], timeout: float) -> Dict[str, FetchResult]:
        ...


def _local_path(identifier: str) -> Optional[str]:
    if identifier.startswith("file://"):
        return identifier[len("file://"):]
    if "://" not in identifier:
        return identifier
    return None


def _read_local(path: str) -> bytes:
    try:
        with open(os.path.expanduser(path), "rb") as fh:
            return fh.read()
    except OSError as exc:
        raise TransportError(path, str(exc)) from exc


class RequestsTransport:
    """Blocking transport on requests; batches run on a thread pool."""

    def __init__(self, session: Optional[requests.Session] = None, max_workers: Optional[int] = None):
        self._session = session or requests.Session()
        self._max_workers = max_workers or Constants.HTTP_MAX_CONCURRENCY

    def fetch(self, identifier: str, timeout: float) -> bytes:
        local = _local_path(identifier)
        if local is not None:
            return _read_local(local)
        return robust_get(identifier, timeout=timeout, session=self._session)

    def fetch_many(self, identifiers: Iterable[str], timeout: float) -> Dict[str, FetchResult]:
        ids = list(dict.fromkeys(identifiers))
        results: Dict[str, FetchResult] = {}

        def _one(identifier: str) -> FetchResult:
            try:
                return self.fetch(identifier, timeout)
            except TransportError as exc:
                return exc

        if not ids:
            return results
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(ids))) as pool:
            for identifier, outcome in zip(ids, pool.map(_one, ids)):
                results[identifier] = outcome
        return results

    def close(self) -> None:
        self._session.close()


class AiohttpTransport:
    """Transport on aiohttp; batch fetches run concurrently on one event loop."""

    def __init__(self, max_concurrency: Optional[int] = None):
        self._max_concurrency = max_concurrency or Constants.HTTP_MAX_CONCURRENCY

    def fetch(self, identifier: str, timeout: float) -> bytes:
        outcome = self.fetch_many([identifier], timeout)[identifier]
        if isinstance(outcome, TransportError):
            raise outcome
        return outcome

    def fetch_many(self, identifiers: Iterable[str], timeout: float) -> Dict[str, FetchResult]:
        ids = list(dict.fromkeys(identifiers))
        results: Dict[str, FetchResult] = {}
        remote = []
        for identifier in ids:
            local = _local_path(identifier)
            if local is None:
                remote.append(identifier)
                continue
            try:
                results[identifier] = _read_local(local)
            except TransportError as exc:
                results[identifier] = exc
        if remote:
            results.update(asyncio.run(self._fetch_all(remote, timeout)))
        return {identifier: results[identifier] for identifier in ids}

    async def _fetch_all(self, urls, timeout: float) -> Dict[str, FetchResult]:
        connector = aiohttp.TCPConnector(limit=self._max_concurrency)
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout, connector=connector) as session:
            outcomes = await asyncio.gather(*(self._fetch_one(session, url, timeout) for url in urls))
        return dict(zip(urls, outcomes))

    async def _fetch_one(self, session: aiohttp.ClientSession, url: str, timeout: float) -> FetchResult:
        target = safe_url(url)
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    return TransportError(target, f"HTTP {response.status}")
                return await response.read()
        except asyncio.TimeoutError:
            return TransportError(target, f"timed out after {timeout} seconds")
        except aiohttp.ClientError as exc:
            return TransportError(target, str(exc))
