# fedsig/errors.py
"""
Exception types for federation signing and delivery.

Verification failures are not exceptions: the gate reports them as a
RejectReason inside a VerificationResult (see activitypub/verifier.py).
"""

from typing import Optional


class FederationError(Exception):
    """Base class for all fedsig errors."""


class ConfigError(FederationError):
    """Federation settings are unusable for signing or verification."""


class FatalConfigError(ConfigError):
    """Startup configuration is invalid; the process must not serve federation."""


class KeyMaterialError(FederationError):
    """An actor's stored key cannot be decoded."""


class SigningError(FederationError):
    """A request could not be signed. Nothing was sent."""


class TransportError(FederationError):
    """
    Delivery failed on the network or with a non-2xx response.

    Attributes:
        status: HTTP status code, None when no response was received
        body: Response body, if any
    """

    def __init__(self, message: str, status: Optional[int] = None, body: bytes = b""):
        super().__init__(message)
        self.status = status
        self.body = body


class KeyResolutionError(FederationError):
    """A remote actor's public key could not be fetched or decoded."""
