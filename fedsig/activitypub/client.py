# fedsig/activitypub/client.py
"""
Signing client for ActivityPub deliveries.

Builds requests signed with an actor's private key and sends them.

Usage:
    client = Client(actor, actor.key_id(base_url), config)
    response = client.post(json.dumps(activity).encode(), remote_inbox)

The client holds no per-request state; one instance may be shared by
threads delivering on behalf of the same actor.
"""

import base64
import http.client
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit
from urllib.request import ProxyHandler, Request, build_opener

from .. import __version__
from ..config import FederationConfig, check_required_headers
from ..errors import ConfigError, SigningError, TransportError
from ..httpsig import (
    SignatureParams,
    compute_digest,
    current_time,
    load_private_key,
    normalize_headers,
    select_algorithm,
    sign,
    signing_string,
)
from .actor import Actor

logger = logging.getLogger(__name__)

ACTIVITY_STREAMS_CONTENT_TYPE = 'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
ACTIVITY_ACCEPT = f'{ACTIVITY_STREAMS_CONTENT_TYPE}, application/activity+json'

# Seconds a signature stays valid after it is made
SIGNATURE_EXPIRATION = 60

USER_AGENT = f"fedsig/{__version__}"


def request_path(url: str) -> str:
    """Path plus query of a URL, as used by (request-target)."""
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


@dataclass
class SignedRequest:
    """An HTTP request carrying Date, Digest and Signature headers."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def path(self) -> str:
        return request_path(self.url)

    def header(self, name: str) -> Optional[str]:
        """Header value by case-insensitive name."""
        return normalize_headers(self.headers).get(name.lower())

    def to_urllib(self) -> Request:
        return Request(self.url, data=self.body, headers=dict(self.headers), method=self.method)


@dataclass
class DeliveryResponse:
    """Response to a successful (2xx) request."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class Client:
    """
    Signs and sends requests on behalf of one actor.

    Args:
        actor: The actor whose private key signs requests
        key_id: Public key identifier placed in the Signature header
        config: Validated federation settings
        proxy: Outbound proxy URL; without one, urllib's environment
            proxy settings apply
        timeout: Request timeout in seconds (defaults to config.request_timeout)
        clock: Time source, for tests

    Raises:
        ConfigError: If the configured header sets are incomplete
        KeyMaterialError: If the actor's private key cannot be decoded
    """

    def __init__(
        self,
        actor: Actor,
        key_id: str,
        config: FederationConfig,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        check_required_headers("GET", config.get_headers)
        check_required_headers("POST", config.post_headers)
        try:
            algorithms = config.signature_algorithms
            self.digest_algorithm = config.digest
        except ValueError as e:
            raise ConfigError(str(e)) from e

        self.private_key = load_private_key(actor.private_key)
        self.key_id = key_id
        self.config = config
        self.timeout = timeout if timeout is not None else config.request_timeout
        self._clock = clock

        # First configured algorithm this key can produce
        self.algorithm = select_algorithm(algorithms, self.private_key)

        if proxy:
            self._opener = build_opener(ProxyHandler({"http": proxy, "https": proxy}))
        else:
            self._opener = build_opener()

    def new_request(self, body: bytes, to: str) -> SignedRequest:
        """
        Build a signed POST delivering body to an inbox.

        Raises:
            SigningError: If the request cannot be signed
        """
        request = SignedRequest(
            method="POST",
            url=to,
            headers={
                "Content-Type": ACTIVITY_STREAMS_CONTENT_TYPE,
                "User-Agent": USER_AGENT,
            },
            body=bytes(body),
        )
        self._sign(request, self.config.post_headers)
        return request

    def new_get_request(self, to: str) -> SignedRequest:
        """Build a signed GET (authorized fetch) for an ActivityPub object."""
        request = SignedRequest(
            method="GET",
            url=to,
            headers={
                "Accept": ACTIVITY_ACCEPT,
                "User-Agent": USER_AGENT,
            },
        )
        self._sign(request, self.config.get_headers)
        return request

    def _sign(self, request: SignedRequest, covered_headers) -> None:
        if self.algorithm is None:
            raise SigningError(
                f"none of the configured algorithms ({', '.join(self.config.algorithms)}) "
                f"can sign with a {type(self.private_key).__name__}"
            )

        now = int(self._clock())
        request.headers["Date"] = current_time(now)
        if request.body is not None:
            request.headers["Digest"] = compute_digest(request.body, self.digest_algorithm)

        covered = [h.lower() for h in covered_headers]
        if "host" in covered and request.header("host") is None:
            request.headers["Host"] = urlsplit(request.url).netloc

        created = now
        expires = now + SIGNATURE_EXPIRATION
        try:
            data = signing_string(
                request.method,
                request.path,
                normalize_headers(request.headers),
                covered,
                created=created,
                expires=expires,
            )
            raw = sign(self.private_key, self.algorithm, data.encode("utf-8"))
        except ValueError as e:
            raise SigningError(f"cannot sign request to {request.url}: {e}") from e

        params = SignatureParams(
            key_id=self.key_id,
            algorithm=self.algorithm.value,
            headers=covered,
            signature=base64.b64encode(raw).decode("ascii"),
            created=created,
            expires=expires,
        )
        request.headers["Signature"] = params.to_header()

    def post(self, body: bytes, to: str) -> DeliveryResponse:
        """
        Sign and deliver body to an inbox. No retries.

        Raises:
            SigningError: If the request cannot be signed
            TransportError: On network failure, timeout, oversize payload
                or a non-2xx response
        """
        if len(body) > self.config.max_size:
            raise TransportError(
                f"payload of {len(body)} bytes exceeds max size of {self.config.max_size} bytes"
            )
        return self.send(self.new_request(body, to))

    def get(self, to: str) -> DeliveryResponse:
        """Sign and send a GET for an ActivityPub object."""
        return self.send(self.new_get_request(to))

    def send(self, request: SignedRequest) -> DeliveryResponse:
        """Send an already signed request."""
        try:
            with self._opener.open(request.to_urllib(), timeout=self.timeout) as response:
                result = DeliveryResponse(
                    status=response.status,
                    headers=dict(response.headers.items()),
                    body=response.read(),
                )
        except HTTPError as e:
            error_body = e.read() or b""
            raise TransportError(
                f"{request.method} {request.url} failed: HTTP {e.code}",
                status=e.code,
                body=error_body,
            ) from e
        except (URLError, OSError, http.client.HTTPException, ValueError) as e:
            raise TransportError(f"{request.method} {request.url} failed: {e}") from e

        logger.info(f"{request.method} {request.url} -> {result.status}")
        return result
