"""Metadata provider: cache first, injected transport on miss."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from packaging.version import Version

from constants import Constants
from common.errors import MetadataUnavailable, TransportError
from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from common.ttl_cache import TTLCache
from pkgcache.keys import CacheKey
from pkgcache.store import PackageCache
from versioning.models import InterpreterDescriptor, PackageMetadata, PackageName, PackageRequirement, SourceDescriptor

from . import pypi
from .transport import Transport

logger = logging.getLogger(__name__)


class MetadataProvider:
    """Answers version listings and per-version metadata for the resolver.

    Immutable per-version documents go through the content-addressed cache.
    Project listings change upstream, so they only live in an in-process TTL
    cache.
    """

    def __init__(
        self,
        cache: PackageCache,
        transport: Transport,
        interpreter: InterpreterDescriptor,
        index_url: Optional[str] = None,
        timeout: Optional[float] = None,
        listing_cache: Optional[TTLCache] = None,
    ):
        self.cache = cache
        self.transport = transport
        self.interpreter = interpreter
        self.default_source = SourceDescriptor.registry(index_url or Constants.INDEX_URL)
        self.timeout = float(timeout if timeout is not None else Constants.REQUEST_TIMEOUT)
        self._listings = listing_cache or TTLCache(default_ttl=Constants.INDEX_CACHE_TTL_SEC)
        self._failures: Dict[Tuple[str, str, str], MetadataUnavailable] = {}
        self._direct: Dict[Tuple[str, SourceDescriptor], PackageMetadata] = {}

    def _source(self, source: Optional[SourceDescriptor]) -> SourceDescriptor:
        return source or self.default_source

    def available_versions(self, name, source: Optional[SourceDescriptor] = None) -> Tuple[Version, ...]:
        """Installable versions of ``name``, ascending.

        Raises:
            MetadataUnavailable: If the listing cannot be fetched or parsed.
        """
        name = PackageName(name)
        source = self._source(source)
        if source.is_direct:
            return (self._direct_metadata(name, source).version,)

        listing_key = (str(source), str(name))
        cached = self._listings.get(listing_key)
        if cached is not None:
            return cached

        url = pypi.project_url(source.location, name)
        with Timer() as timer:
            try:
                data = self.transport.fetch(url, self.timeout)
                releases = pypi.parse_project_listing(data)
            except TransportError as exc:
                raise MetadataUnavailable(str(name), None, exc.cause) from exc
            except ValueError as exc:
                raise MetadataUnavailable(str(name), None, str(exc)) from exc

        python_version = self.interpreter.version
        versions = tuple(
            r.version for r in releases
            if not r.yanked and pypi.python_compatible(r.requires_python, python_version)
        )
        if is_debug_enabled(logger):
            logger.debug("Fetched project listing", extra=extra_context(
                event="listing_fetched", component="metadata", action="available_versions",
                target=safe_url(url), package_name=str(name), count=len(versions),
                skipped=len(releases) - len(versions), duration_ms=timer.duration_ms()))
        self._listings.set(listing_key, versions)
        return versions

    def metadata_for(self, name, version: Version, source: Optional[SourceDescriptor] = None) -> PackageMetadata:
        """Full metadata (requirements, extras, artifacts) of one release.

        Raises:
            MetadataUnavailable: On transport failure, timeout or a bad document.
            CacheIntegrityViolation: If the cache already holds different bytes.
        """
        name = PackageName(name)
        source = self._source(source)
        if source.is_direct:
            meta = self._direct_metadata(name, source)
            if meta.version != version:
                raise MetadataUnavailable(str(name), str(version), f"{source.location} provides {meta.version}")
            return meta

        failure_key = (str(name), str(version), str(source))
        if failure_key in self._failures:
            raise self._failures[failure_key]

        key = CacheKey.for_metadata(name, version, source)
        document = self.cache.get(key)
        if document is None:
            url = pypi.release_url(source.location, name, version)
            try:
                raw = self.transport.fetch(url, self.timeout)
            except TransportError as exc:
                raise self._fail(failure_key, exc.cause) from exc
            document = self._store_release(failure_key, key, raw, name, version)
        try:
            return pypi.metadata_from_document(document, source)
        except (KeyError, ValueError) as exc:
            raise self._fail(failure_key, f"unreadable cached document {key}: {exc}") from exc

    def requirements_of(self, name, version: Version,
                        source: Optional[SourceDescriptor] = None) -> Tuple[PackageRequirement, ...]:
        """Base requirements of one release, in declaration order."""
        return self.metadata_for(name, version, source).requirements

    def prefetch(self, name, versions: Iterable[Version], source: Optional[SourceDescriptor] = None) -> int:
        """Fill the cache for several versions with one batched transport call.

        Failures are remembered and re-raised by a later ``metadata_for``.
        Returns the number of documents stored.
        """
        name = PackageName(name)
        source = self._source(source)
        if source.is_direct:
            return 0
        pending: Dict[str, Tuple[Version, CacheKey]] = {}
        for version in versions:
            key = CacheKey.for_metadata(name, version, source)
            if (str(name), str(version), str(source)) in self._failures or self.cache.contains(key):
                continue
            pending[pypi.release_url(source.location, name, version)] = (version, key)
        if not pending:
            return 0

        stored = 0
        outcomes = self.transport.fetch_many(list(pending), self.timeout)
        for url in pending:
            version, key = pending[url]
            failure_key = (str(name), str(version), str(source))
            outcome = outcomes.get(url)
            if outcome is None:
                self._fail(failure_key, "no response from transport")
            elif isinstance(outcome, TransportError):
                self._fail(failure_key, outcome.cause)
            else:
                try:
                    self._store_release(failure_key, key, outcome, name, version)
                    stored += 1
                except MetadataUnavailable:
                    continue
        if is_debug_enabled(logger):
            logger.debug("Prefetched release metadata", extra=extra_context(
                event="prefetch", component="metadata", action="prefetch",
                package_name=str(name), count=len(pending), outcome=f"{stored} stored"))
        return stored

    def _store_release(self, failure_key, key: CacheKey, raw: bytes, name: PackageName, version: Version) -> bytes:
        try:
            document = pypi.normalize_release(raw, name, version)
        except ValueError as exc:
            raise self._fail(failure_key, str(exc)) from exc
        self.cache.put(key, document)
        return document

    def _fail(self, failure_key, cause: str) -> MetadataUnavailable:
        error = MetadataUnavailable(failure_key[0], failure_key[1], cause)
        self._failures[failure_key] = error
        logger.debug("Metadata unavailable for %s %s: %s", failure_key[0], failure_key[1], cause)
        return error

    def _direct_metadata(self, name: PackageName, source: SourceDescriptor) -> PackageMetadata:
        """Metadata of a direct URL/path reference, read from the wheel itself."""
        memo_key = (str(name), source)
        if memo_key in self._direct:
            return self._direct[memo_key]

        direct_key = CacheKey.for_direct(name, source)
        payload = self.cache.get(direct_key)
        if payload is None:
            try:
                payload = self.transport.fetch(source.location, self.timeout)
            except TransportError as exc:
                raise MetadataUnavailable(str(name), None, exc.cause) from exc
            self.cache.put(direct_key, payload)
        try:
            document = pypi.document_from_wheel(payload, source)
            meta = pypi.metadata_from_document(document, source)
        except (KeyError, ValueError) as exc:
            raise MetadataUnavailable(str(name), None, str(exc)) from exc
        if meta.name != name:
            raise MetadataUnavailable(str(name), None, f"{source.location} contains {meta.name}, not {name}")
        self.cache.put(CacheKey.for_metadata(name, meta.version, source), document)
        self._direct[memo_key] = meta
        return meta

