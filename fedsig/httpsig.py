# fedsig/httpsig.py
"""
HTTP Signatures primitives (draft-cavage-http-signatures).

Shared by the signing client and the verification gate:
- Algorithm / DigestAlgorithm: the names negotiated on the wire
- Date header formatting and parsing
- Digest header computation and checking
- Signature header parameters and the signing string
- Raw sign/verify with RSA (PKCS#1 v1.5) and Ed25519 keys

Signing string format:
    (request-target): post /api/v1/activitypub/user/user2/inbox
    date: Mon, 19 Oct 2026 10:00:00 GMT
    digest: SHA-256=47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU=

One line per covered header, in the order the Signature header lists them,
joined with "\\n" and no trailing newline.
"""

import base64
import hashlib
import hmac
import re
from dataclasses import dataclass, field
from email.utils import formatdate, parsedate_to_datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from .errors import KeyMaterialError

REQUEST_TARGET = "(request-target)"
CREATED = "(created)"
EXPIRES = "(expires)"

PSEUDO_HEADERS = (REQUEST_TARGET, CREATED, EXPIRES)


class Algorithm(Enum):
    """Signature algorithms accepted in the Signature header."""
    RSA_SHA256 = "rsa-sha256"
    RSA_SHA512 = "rsa-sha512"
    ED25519 = "ed25519"


class DigestAlgorithm(Enum):
    """Body digest algorithms accepted in the Digest header."""
    SHA256 = "SHA-256"
    SHA512 = "SHA-512"


_DIGEST_HASHLIB = {
    DigestAlgorithm.SHA256: "sha256",
    DigestAlgorithm.SHA512: "sha512",
}

_RSA_HASHES = {
    Algorithm.RSA_SHA256: hashes.SHA256,
    Algorithm.RSA_SHA512: hashes.SHA512,
}


def parse_algorithm(name: str) -> Algorithm:
    """Look up a signature algorithm by wire name (case-insensitive)."""
    for alg in Algorithm:
        if alg.value == name.strip().lower():
            return alg
    raise ValueError(f"unsupported signature algorithm: {name}")


def parse_digest_algorithm(name: str) -> DigestAlgorithm:
    """Look up a digest algorithm by wire name (case-insensitive)."""
    for alg in DigestAlgorithm:
        if alg.value == name.strip().upper():
            return alg
    raise ValueError(f"unsupported digest algorithm: {name}")


def is_supported_digest_algorithm(name: str) -> bool:
    try:
        parse_digest_algorithm(name)
    except ValueError:
        return False
    return True


# Dates

def current_time(now: Optional[float] = None) -> str:
    """
    Current time as an RFC 2616 Date header value.

    RFC 2616 wants RFC 1123 dates with the literal zone "GMT", never "UTC",
    e.g. "Mon, 19 Oct 2026 10:00:00 GMT".

    Args:
        now: Unix timestamp to format (defaults to the current time)
    """
    return formatdate(now, usegmt=True)


def parse_http_date(value: str) -> float:
    """
    Parse a Date header value into a Unix timestamp.

    Raises:
        ValueError: If the value is not an RFC 1123 / RFC 2822 date
    """
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as e:
        raise ValueError(f"invalid Date header: {value!r}") from e
    if parsed is None or parsed.tzinfo is None:
        raise ValueError(f"Date header has no zone: {value!r}")
    return parsed.timestamp()


# Digest

def compute_digest(body: bytes, algorithm: DigestAlgorithm) -> str:
    """Digest header value for body, e.g. "SHA-256=<base64>"."""
    hasher = hashlib.new(_DIGEST_HASHLIB[algorithm])
    hasher.update(body)
    return f"{algorithm.value}={base64.b64encode(hasher.digest()).decode('ascii')}"


def verify_digest(header_value: str, body: bytes, algorithm: DigestAlgorithm) -> bool:
    """
    Check a Digest header against body.

    The header may list several digests ("SHA-256=...,SHA-512=..."); only the
    entry for the configured algorithm is considered, and it must be present.
    """
    expected = compute_digest(body, algorithm).split("=", 1)[1]
    for entry in header_value.split(","):
        name, sep, value = entry.strip().partition("=")
        if not sep or name.strip().upper() != algorithm.value:
            continue
        return hmac.compare_digest(value.strip().encode("ascii", "replace"), expected.encode("ascii"))
    return False


# Signature header

_PARAM_RE = re.compile(r'\s*([A-Za-z]+)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|(\d+))\s*(?:,|$)')


@dataclass
class SignatureParams:
    """
    Parameters of a Signature header.

    Attributes:
        key_id: URL of the signer's public key (e.g. ".../user/user1#main-key")
        algorithm: Declared algorithm name as sent on the wire
        headers: Covered header names, lowercase, in signing order
        signature: Base64-encoded signature value
        created: Unix time the signature was made
        expires: Unix time after which the signature is void
    """
    key_id: str
    algorithm: str
    headers: List[str] = field(default_factory=list)
    signature: str = ""
    created: Optional[int] = None
    expires: Optional[int] = None

    def to_header(self) -> str:
        parts = [
            f'keyId="{self.key_id}"',
            f'algorithm="{self.algorithm}"',
            f'headers="{" ".join(self.headers)}"',
        ]
        if self.created is not None:
            parts.append(f"created={self.created}")
        if self.expires is not None:
            parts.append(f"expires={self.expires}")
        parts.append(f'signature="{self.signature}"')
        return ",".join(parts)

    @classmethod
    def from_header(cls, value: str) -> "SignatureParams":
        """
        Parse a Signature header value.

        Raises:
            ValueError: If the header is malformed or lacks keyId/signature
        """
        params = {}
        pos = 0
        value = value.strip()
        while pos < len(value):
            match = _PARAM_RE.match(value, pos)
            if not match:
                raise ValueError(f"malformed Signature header at offset {pos}")
            name = match.group(1)
            params[name] = match.group(2) if match.group(2) is not None else match.group(3)
            pos = match.end()

        if not params.get("keyId"):
            raise ValueError("Signature header has no keyId")
        if not params.get("signature"):
            raise ValueError("Signature header has no signature")

        # Without a headers parameter only the Date header is covered
        covered = params.get("headers", "date").split()
        return cls(
            key_id=params["keyId"],
            algorithm=params.get("algorithm", ""),
            headers=[h.lower() for h in covered],
            signature=params["signature"],
            created=_int_param(params, "created"),
            expires=_int_param(params, "expires"),
        )


def _int_param(params: Mapping[str, str], name: str) -> Optional[int]:
    raw = params.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Signature parameter {name} is not an integer: {raw!r}")


def normalize_headers(headers) -> dict:
    """Lowercase header names. Accepts a mapping or an email.message.Message."""
    items = headers.items() if hasattr(headers, "items") else headers
    return {name.lower(): value for name, value in items}


def signing_string(
    method: str,
    path: str,
    headers: Mapping[str, str],
    covered: Sequence[str],
    created: Optional[int] = None,
    expires: Optional[int] = None,
) -> str:
    """
    Build the string a signature is computed over.

    Args:
        method: HTTP method
        path: Request path including the query string
        headers: Request headers, lowercase names
        covered: Header names to include, in order
        created: Value for the (created) pseudo-header
        expires: Value for the (expires) pseudo-header

    Raises:
        ValueError: If a covered header has no value
    """
    lines = []
    for name in covered:
        name = name.lower()
        if name == REQUEST_TARGET:
            value = f"{method.lower()} {path}"
        elif name == CREATED:
            if created is None:
                raise ValueError("(created) is covered but no created time is set")
            value = str(created)
        elif name == EXPIRES:
            if expires is None:
                raise ValueError("(expires) is covered but no expiry is set")
            value = str(expires)
        else:
            if name not in headers:
                raise ValueError(f"covered header missing from request: {name}")
            value = headers[name].strip()
        lines.append(f"{name}: {value}")
    return "\n".join(lines)


# Keys

def load_private_key(pem: bytes | str):
    """
    Parse a PEM private key (PKCS#1 or PKCS#8).

    Raises:
        KeyMaterialError: If the key cannot be decoded or is not RSA/Ed25519
    """
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"cannot decode private key: {e}") from e
    if not isinstance(key, (rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey)):
        raise KeyMaterialError(f"unsupported private key type: {type(key).__name__}")
    return key


def load_public_key(pem: bytes | str):
    """
    Parse a PEM SubjectPublicKeyInfo public key.

    Raises:
        ValueError: If the key cannot be decoded or is not RSA/Ed25519
    """
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        key = serialization.load_pem_public_key(pem)
    except UnsupportedAlgorithm as e:
        raise ValueError(f"unsupported public key: {e}") from e
    if not isinstance(key, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        raise ValueError(f"unsupported public key type: {type(key).__name__}")
    return key


def key_supports(key, algorithm: Algorithm) -> bool:
    """Whether a private or public key can be used with algorithm."""
    if algorithm in _RSA_HASHES:
        return isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey))
    return isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey))


def select_algorithm(algorithms: Iterable[Algorithm], key) -> Optional[Algorithm]:
    """First configured algorithm the key can sign with, or None."""
    for alg in algorithms:
        if key_supports(key, alg):
            return alg
    return None


def sign(private_key, algorithm: Algorithm, data: bytes) -> bytes:
    if not key_supports(private_key, algorithm):
        raise ValueError(f"{algorithm.value} cannot be used with a {type(private_key).__name__}")
    if algorithm is Algorithm.ED25519:
        return private_key.sign(data)
    return private_key.sign(data, padding.PKCS1v15(), _RSA_HASHES[algorithm]())


def verify(public_key, algorithm: Algorithm, data: bytes, signature: bytes) -> bool:
    """Check a raw signature. Returns False for any mismatch."""
    if not key_supports(public_key, algorithm):
        return False
    try:
        if algorithm is Algorithm.ED25519:
            public_key.verify(signature, data)
        else:
            public_key.verify(signature, data, padding.PKCS1v15(), _RSA_HASHES[algorithm]())
        return True
    except InvalidSignature:
        return False
