# fedsig/activitypub/verifier.py
"""
Verification of signed inbound requests.

Each request walks the same steps and stops at the first failure:

    1. headers   - Signature and every configured required header present
    2. key       - keyId resolved to the signer's public key
    3. digest    - Digest header matches the body
    4. freshness - Date within the clock skew window, signature not expired
    5. signature - covered headers, algorithm and signature value check out

A request is accepted only when every step passes. Failures are returned
as a VerificationResult with a RejectReason; verify() does not raise for
bad requests, and an unexpected error is a rejection.
"""

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional

from ..config import FederationConfig, check_required_headers
from ..errors import KeyResolutionError
from ..httpsig import (
    PSEUDO_HEADERS,
    Algorithm,
    SignatureParams,
    normalize_headers,
    parse_algorithm,
    parse_http_date,
    select_algorithm,
    signing_string,
    verify,
    verify_digest,
)
from .client import SignedRequest
from .keys import KeyResolver

logger = logging.getLogger(__name__)


class RejectReason(Enum):
    """Why a request was rejected."""
    MISSING_HEADERS = "missing_headers"
    KEY_RESOLUTION_FAILED = "key_resolution_failed"
    DIGEST_MISMATCH = "digest_mismatch"
    STALE = "stale"
    BAD_SIGNATURE = "bad_signature"


@dataclass
class VerificationResult:
    """
    Outcome of verifying a request.

    Attributes:
        accepted: Whether the request is authentic
        actor_id: Owner of the signing key (accepted requests only)
        key_id: keyId from the Signature header, if it could be read
        reason: Why the request was rejected
        message: Human-readable detail
    """
    accepted: bool
    actor_id: Optional[str] = None
    key_id: Optional[str] = None
    reason: Optional[RejectReason] = None
    message: str = ""

    @classmethod
    def ok(cls, actor_id: str, key_id: str) -> "VerificationResult":
        return cls(accepted=True, actor_id=actor_id, key_id=key_id)

    @classmethod
    def fail(cls, reason: RejectReason, message: str, key_id: Optional[str] = None) -> "VerificationResult":
        return cls(accepted=False, reason=reason, message=message, key_id=key_id)

    def __bool__(self) -> bool:
        return self.accepted


class Verifier:
    """
    Verification gate for signed requests.

    Args:
        config: Validated federation settings
        resolver: Key resolver (shared between verifiers)
        clock: Wall-clock time source, for tests

    Raises:
        ConfigError: If a signed header list lacks a required header
    """

    def __init__(
        self,
        config: FederationConfig,
        resolver: Optional[KeyResolver] = None,
        clock: Callable[[], float] = time.time,
    ):
        check_required_headers("GET", config.get_headers)
        check_required_headers("POST", config.post_headers)
        self.config = config
        self.resolver = resolver if resolver is not None else KeyResolver.from_config(config)
        self.digest_algorithm = config.digest
        self.algorithms = config.signature_algorithms
        self._clock = clock

    def verify(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> VerificationResult:
        """
        Verify one request.

        Args:
            method: HTTP method
            path: Request path including query string
            headers: Request headers (any case)
            body: Request body; None when the request has none
        """
        try:
            result = self._verify(method, path, normalize_headers(headers), body)
        except Exception as e:
            logger.exception(f"Unexpected error verifying {method} {path}")
            result = VerificationResult.fail(RejectReason.BAD_SIGNATURE, f"verification error: {e}")
        if result.accepted:
            logger.debug(f"Accepted {method} {path} from {result.actor_id}")
        else:
            logger.warning(
                f"Rejected {method} {path} ({result.reason.value}): {result.message}"
            )
        return result

    def verify_request(self, request: SignedRequest) -> VerificationResult:
        """Verify a SignedRequest as the receiving end would see it."""
        return self.verify(request.method, request.path, request.headers, request.body)

    def _verify(self, method: str, path: str, headers: dict, body: Optional[bytes]) -> VerificationResult:
        # 1. Required headers
        if "signature" not in headers:
            return VerificationResult.fail(RejectReason.MISSING_HEADERS, "request is not signed")

        required = [h.lower() for h in self.config.headers_for(method)]
        missing = [h for h in required if h not in PSEUDO_HEADERS and h not in headers]
        if missing:
            return VerificationResult.fail(
                RejectReason.MISSING_HEADERS,
                f"missing required headers: {', '.join(missing)}",
            )
        if body is not None and "digest" not in headers:
            return VerificationResult.fail(RejectReason.MISSING_HEADERS, "body sent without Digest")

        try:
            params = SignatureParams.from_header(headers["signature"])
        except ValueError as e:
            return VerificationResult.fail(RejectReason.MISSING_HEADERS, str(e))
        key_id = params.key_id

        # 2. Signer's key
        try:
            key = self.resolver.resolve(key_id)
        except KeyResolutionError as e:
            return VerificationResult.fail(RejectReason.KEY_RESOLUTION_FAILED, str(e), key_id)

        # 3. Body digest
        if "digest" in headers:
            if not verify_digest(headers["digest"], body or b"", self.digest_algorithm):
                return VerificationResult.fail(
                    RejectReason.DIGEST_MISMATCH,
                    f"Digest does not match body ({self.digest_algorithm.value})",
                    key_id,
                )

        # 4. Freshness
        stale = self._check_freshness(headers, params)
        if stale:
            return VerificationResult.fail(RejectReason.STALE, stale, key_id)

        # 5. Signature
        covered = set(params.headers)
        uncovered = [h for h in required if h not in covered]
        if body is not None and "digest" not in covered:
            uncovered.append("digest")
        if uncovered:
            return VerificationResult.fail(
                RejectReason.BAD_SIGNATURE,
                f"signature does not cover: {', '.join(uncovered)}",
                key_id,
            )

        try:
            algorithm = parse_algorithm(params.algorithm) if params.algorithm else None
        except ValueError as e:
            return VerificationResult.fail(RejectReason.BAD_SIGNATURE, str(e), key_id)
        if algorithm is None:
            algorithm = self._default_algorithm(key.public_key)
        if algorithm is None or algorithm not in self.algorithms:
            return VerificationResult.fail(
                RejectReason.BAD_SIGNATURE,
                f"algorithm {params.algorithm or '(none)'} is not acceptable",
                key_id,
            )

        try:
            data = signing_string(
                method, path, headers, params.headers,
                created=params.created, expires=params.expires,
            )
            raw = base64.b64decode(params.signature, validate=True)
        except (ValueError, binascii.Error) as e:
            return VerificationResult.fail(RejectReason.BAD_SIGNATURE, str(e), key_id)

        if not verify(key.public_key, algorithm, data.encode("utf-8"), raw):
            return VerificationResult.fail(
                RejectReason.BAD_SIGNATURE,
                f"signature by {key_id} does not verify",
                key_id,
            )

        return VerificationResult.ok(key.owner, key_id)

    def _check_freshness(self, headers: dict, params: SignatureParams) -> Optional[str]:
        """Reason the request is stale, or None if it is fresh."""
        now = self._clock()
        skew = self.config.max_clock_skew

        if "date" in headers:
            try:
                sent = parse_http_date(headers["date"])
            except ValueError as e:
                return str(e)
            if abs(now - sent) > skew:
                return f"Date {headers['date']!r} is outside the {skew:g}s window"

        if params.expires is not None and now > params.expires:
            return f"signature expired at {params.expires}"
        if params.created is not None and params.created > now + skew:
            return f"signature created in the future ({params.created})"
        return None

    def _default_algorithm(self, public_key) -> Optional[Algorithm]:
        """Algorithm to assume when the Signature header names none."""
        return select_algorithm(self.algorithms, public_key)
