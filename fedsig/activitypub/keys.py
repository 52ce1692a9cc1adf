# fedsig/activitypub/keys.py
"""
Public key resolution for signature verification.

A keyId such as https://remote.example/api/v1/activitypub/user/alice#main-key
is dereferenced to the actor document at the URL without the fragment, and
the publicKey entry with a matching id supplies the PEM.

Resolved keys are cached by keyId:
- entries expire after a TTL
- the cache holds at most max_size entries (least recently used go first)
- concurrent lookups of the same unknown keyId share one fetch

Failed fetches are never cached.
"""

import http.client
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urldefrag
from urllib.request import Request, urlopen

from ..config import FederationConfig
from ..errors import KeyResolutionError, TransportError
from ..httpsig import load_public_key
from .client import ACTIVITY_ACCEPT, USER_AGENT, Client

logger = logging.getLogger(__name__)

# Actor documents larger than this are refused
MAX_DOCUMENT_SIZE = 1 << 20

# Fetch function: URL -> parsed JSON document
Fetcher = Callable[[str], Dict[str, Any]]


@dataclass
class ResolvedKey:
    """A public key fetched for a keyId."""
    key_id: str
    owner: str
    public_key_pem: str
    public_key: Any
    fetched_at: float = 0.0


@dataclass
class KeyCacheStats:
    """Statistics about key cache usage."""
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    coalesced: int = 0
    hit_rate: float = 0.0

    def record_hit(self):
        self.hits += 1
        self._update_rate()

    def record_miss(self):
        self.misses += 1
        self._update_rate()

    def _update_rate(self):
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total > 0 else 0.0


class _Flight:
    """One in-progress fetch that other lookups can wait on."""

    def __init__(self):
        self.done = threading.Event()
        self.result: Optional[ResolvedKey] = None
        self.error: Optional[KeyResolutionError] = None


class KeyResolver:
    """
    Resolves and caches remote public keys.

    Args:
        ttl: Seconds a resolved key is served from cache
        max_size: Most keys kept in cache
        timeout: Fetch timeout in seconds, also the longest a lookup
            waits on another thread's fetch
        fetch: Replaces the HTTP fetch (URL -> JSON document)
        client: Signs key fetches with this client (authorized fetch)
        clock: Monotonic time source, for tests
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_size: int = 1024,
        timeout: float = 30.0,
        fetch: Optional[Fetcher] = None,
        client: Optional[Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self.timeout = timeout
        self.client = client
        self.stats = KeyCacheStats()
        self._fetch = fetch or self._http_fetch
        self._clock = clock
        self._cache: "OrderedDict[str, ResolvedKey]" = OrderedDict()
        self._inflight: Dict[str, _Flight] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: FederationConfig, **kwargs) -> "KeyResolver":
        kwargs.setdefault("ttl", config.key_cache_ttl)
        kwargs.setdefault("max_size", config.key_cache_size)
        kwargs.setdefault("timeout", config.request_timeout)
        return cls(**kwargs)

    def resolve(self, key_id: str) -> ResolvedKey:
        """
        Get the public key for key_id, from cache or by fetching it.

        Raises:
            KeyResolutionError: If the key cannot be fetched or decoded
        """
        with self._lock:
            entry = self._cache.get(key_id)
            if entry is not None and self._clock() - entry.fetched_at < self.ttl:
                self._cache.move_to_end(key_id)
                self.stats.record_hit()
                return entry
            if entry is not None:
                del self._cache[key_id]

            self.stats.record_miss()
            flight = self._inflight.get(key_id)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[key_id] = flight
            else:
                self.stats.coalesced += 1

        if not leader:
            if not flight.done.wait(self.timeout):
                raise KeyResolutionError(f"timed out waiting for key fetch: {key_id}")
            if flight.error is not None:
                raise flight.error
            return flight.result

        try:
            result = self._load(key_id)
            flight.result = result
            with self._lock:
                self._cache[key_id] = result
                while len(self._cache) > self.max_size:
                    evicted, _ = self._cache.popitem(last=False)
                    logger.debug(f"Evicted key {evicted}")
            return result
        except KeyResolutionError as e:
            flight.error = e
            raise
        finally:
            if flight.result is None and flight.error is None:
                flight.error = KeyResolutionError(f"key fetch aborted: {key_id}")
            with self._lock:
                self._inflight.pop(key_id, None)
            flight.done.set()

    def _load(self, key_id: str) -> ResolvedKey:
        url, _ = urldefrag(key_id)
        if not url.startswith(("http://", "https://")):
            raise KeyResolutionError(f"keyId is not an http(s) URL: {key_id}")

        with self._lock:
            self.stats.fetches += 1
        logger.debug(f"Fetching public key {key_id} from {url}")
        document = self._fetch(url)
        if not isinstance(document, dict):
            raise KeyResolutionError(f"key document at {url} is not a JSON object")

        entry = _find_key_entry(document, key_id)
        if entry is None:
            raise KeyResolutionError(f"no public key {key_id} in document at {url}")

        pem = entry.get("publicKeyPem")
        if not isinstance(pem, str):
            raise KeyResolutionError(f"public key {key_id} has no publicKeyPem")
        try:
            public_key = load_public_key(pem)
        except ValueError as e:
            raise KeyResolutionError(f"cannot decode public key {key_id}: {e}") from e

        document_id = document.get("id")
        owner = entry.get("owner") or document_id or url
        # A key nested in an actor document must belong to that actor
        if entry is not document and document_id and owner != document_id:
            raise KeyResolutionError(
                f"public key {key_id} is owned by {owner}, not by {document_id}"
            )

        return ResolvedKey(
            key_id=key_id,
            owner=owner,
            public_key_pem=pem,
            public_key=public_key,
            fetched_at=self._clock(),
        )

    def _http_fetch(self, url: str) -> Dict[str, Any]:
        """Fetch and parse a JSON-LD document."""
        if self.client is not None:
            try:
                body = self.client.get(url).body
            except TransportError as e:
                raise KeyResolutionError(f"cannot fetch {url}: {e}") from e
        else:
            request = Request(url, headers={"Accept": ACTIVITY_ACCEPT, "User-Agent": USER_AGENT})
            try:
                with urlopen(request, timeout=self.timeout) as response:
                    body = response.read(MAX_DOCUMENT_SIZE + 1)
            except HTTPError as e:
                raise KeyResolutionError(f"cannot fetch {url}: HTTP {e.code}") from e
            except (URLError, OSError, http.client.HTTPException, ValueError) as e:
                raise KeyResolutionError(f"cannot fetch {url}: {e}") from e

        if len(body) > MAX_DOCUMENT_SIZE:
            raise KeyResolutionError(f"document at {url} exceeds {MAX_DOCUMENT_SIZE} bytes")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise KeyResolutionError(f"invalid JSON at {url}: {e}") from e

    def invalidate(self, key_id: str) -> None:
        """Drop a cached key, e.g. after the remote actor rotated it."""
        with self._lock:
            self._cache.pop(key_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, key_id: str) -> bool:
        with self._lock:
            return key_id in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


def _find_key_entry(document: Dict[str, Any], key_id: str) -> Optional[Dict[str, Any]]:
    """The publicKey entry whose id is key_id, or the document itself if it is that key."""
    if document.get("id") == key_id and "publicKeyPem" in document:
        return document

    candidates = document.get("publicKey")
    if isinstance(candidates, dict):
        candidates = [candidates]
    if not isinstance(candidates, list):
        return None
    for candidate in candidates:
        if isinstance(candidate, dict) and candidate.get("id") == key_id:
            return candidate
    return None
