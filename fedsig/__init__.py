# fedsig - HTTP Signatures for ActivityPub federation
#
# Authenticates actor-to-actor deliveries: outbound requests are signed with
# the sending actor's private key, inbound requests are checked against the
# signer's published public key before the payload is accepted.
#
# Core concepts:
# - FederationConfig: Validated, immutable signing/verification settings
# - Actor: A local identity with a key pair and a Person document
# - Client: Signs and delivers requests for one actor
# - Verifier: Accepts or rejects signed inbound requests
# - KeyResolver: Fetches and caches remote public keys

__version__ = "0.1.0"

from .config import FederationConfig, load_config, validate
from .errors import (
    FederationError,
    ConfigError,
    FatalConfigError,
    KeyMaterialError,
    KeyResolutionError,
    SigningError,
    TransportError,
)
from .activitypub import (
    Actor,
    ActorStore,
    Client,
    SignedRequest,
    DeliveryResponse,
    KeyResolver,
    Verifier,
    VerificationResult,
    RejectReason,
)

__all__ = [
    # Configuration
    "FederationConfig",
    "load_config",
    "validate",
    # Errors
    "FederationError",
    "ConfigError",
    "FatalConfigError",
    "KeyMaterialError",
    "KeyResolutionError",
    "SigningError",
    "TransportError",
    # ActivityPub
    "Actor",
    "ActorStore",
    "Client",
    "SignedRequest",
    "DeliveryResponse",
    "KeyResolver",
    "Verifier",
    "VerificationResult",
    "RejectReason",
]
