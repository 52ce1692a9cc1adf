# fedsig/activitypub/__init__.py
"""
ActivityPub delivery authentication.

Core concepts:
- Actor: A local identity with a key pair
- Client: Signs outbound deliveries with an actor's key
- KeyResolver: Dereferences keyIds to remote public keys
- Verifier: Checks inbound deliveries against the signer's key
"""

from .actor import Actor, ActorStore, actor_url
from .client import (
    ACTIVITY_STREAMS_CONTENT_TYPE,
    Client,
    DeliveryResponse,
    SignedRequest,
)
from .keys import KeyResolver, ResolvedKey
from .verifier import RejectReason, VerificationResult, Verifier

__all__ = [
    "Actor",
    "ActorStore",
    "actor_url",
    "ACTIVITY_STREAMS_CONTENT_TYPE",
    "Client",
    "DeliveryResponse",
    "SignedRequest",
    "KeyResolver",
    "ResolvedKey",
    "RejectReason",
    "VerificationResult",
    "Verifier",
]
