# fedsig/activitypub/actor.py
"""
ActivityPub Actor records.

An Actor is a local identity with:
- Username and display name
- Key pair for HTTP Signatures (private key never leaves the record)
- ActivityPub Person representation, served at
  <base-url>/api/v1/activitypub/user/<username>
"""

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

ACTIVITYPUB_PATH = "/api/v1/activitypub/user"


def _generate_keypair(key_type: str = "rsa") -> tuple[bytes, bytes]:
    """
    Generate a signing key pair.

    RSA keys are stored as PKCS#1 ("BEGIN RSA PRIVATE KEY"); Ed25519 keys
    have no PKCS#1 form and are stored as PKCS#8.
    """
    if key_type == "rsa":
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=2048,
        )
        private_format = serialization.PrivateFormat.TraditionalOpenSSL
    elif key_type == "ed25519":
        private_key = ed25519.Ed25519PrivateKey.generate()
        private_format = serialization.PrivateFormat.PKCS8
    else:
        raise ValueError(f"unknown key type: {key_type}")

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=private_format,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def actor_url(base_url: str, username: str) -> str:
    """ActivityPub actor ID (URL) for a username."""
    return f"{base_url.rstrip('/')}{ACTIVITYPUB_PATH}/{username}"


@dataclass
class Actor:
    """
    A local ActivityPub Actor (identity).

    Attributes:
        username: Unique username (e.g., "user1")
        display_name: Human-readable name
        public_key: PEM-encoded public key (SubjectPublicKeyInfo)
        private_key: PEM-encoded private key (kept secret)
        created_at: Timestamp of creation
    """
    username: str
    display_name: str
    public_key: bytes
    private_key: bytes
    created_at: float = field(default_factory=time.time)

    def id(self, base_url: str) -> str:
        return actor_url(base_url, self.username)

    def inbox(self, base_url: str) -> str:
        return f"{self.id(base_url)}/inbox"

    def outbox(self, base_url: str) -> str:
        return f"{self.id(base_url)}/outbox"

    def key_id(self, base_url: str) -> str:
        """Key ID for HTTP Signatures."""
        return f"{self.id(base_url)}#main-key"

    def to_activitypub(self, base_url: str) -> Dict[str, Any]:
        """Return ActivityPub JSON-LD Person representation."""
        actor_id = self.id(base_url)
        return {
            "@context": [
                "https://www.w3.org/ns/activitystreams",
                "https://w3id.org/security/v1",
            ],
            "type": "Person",
            "id": actor_id,
            "preferredUsername": self.username,
            "name": self.display_name,
            "inbox": self.inbox(base_url),
            "outbox": self.outbox(base_url),
            "publicKey": {
                "id": self.key_id(base_url),
                "owner": actor_id,
                "publicKeyPem": self.public_key.decode("utf-8"),
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return {
            "username": self.username,
            "display_name": self.display_name,
            "public_key": self.public_key.decode("utf-8"),
            "private_key": self.private_key.decode("utf-8"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Deserialize from storage."""
        return cls(
            username=data["username"],
            display_name=data.get("display_name", data["username"]),
            public_key=data["public_key"].encode("utf-8"),
            private_key=data["private_key"].encode("utf-8"),
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def create(cls, username: str, display_name: str = None, key_type: str = "rsa") -> "Actor":
        """Create a new actor with generated keys."""
        private_pem, public_pem = _generate_keypair(key_type)
        return cls(
            username=username,
            display_name=display_name or username,
            public_key=public_pem,
            private_key=private_pem,
        )


class ActorStore:
    """
    Storage for local actors.

    With a store_dir the actors are persisted to store_dir/actors.json;
    without one the store lives in memory only.
    """

    def __init__(self, store_dir: Optional[Path | str] = None):
        self.store_dir = Path(store_dir) if store_dir is not None else None
        self._actors: Dict[str, Actor] = {}
        self._lock = threading.Lock()
        if self.store_dir is not None:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    def _index_path(self) -> Path:
        return self.store_dir / "actors.json"

    def _load(self):
        """Load actors from disk."""
        index_path = self._index_path()
        if index_path.exists():
            with open(index_path) as f:
                data = json.load(f)
            self._actors = {
                username: Actor.from_dict(actor_data)
                for username, actor_data in data.get("actors", {}).items()
            }

    def _save(self):
        """Save actors to disk."""
        if self.store_dir is None:
            return
        data = {
            "version": "1.0",
            "actors": {
                username: actor.to_dict()
                for username, actor in self._actors.items()
            },
        }
        index_path = self._index_path()
        with open(index_path, "w") as f:
            json.dump(data, f, indent=2)
        index_path.chmod(0o600)

    def create(self, username: str, display_name: str = None, key_type: str = "rsa") -> Actor:
        """Create and store a new actor."""
        with self._lock:
            if username in self._actors:
                raise ValueError(f"Actor {username} already exists")

            actor = Actor.create(username, display_name, key_type)
            self._actors[username] = actor
            self._save()
        return actor

    def add(self, actor: Actor) -> Actor:
        """Store an existing actor, keeping its keys."""
        with self._lock:
            if actor.username in self._actors:
                raise ValueError(f"Actor {actor.username} already exists")
            self._actors[actor.username] = actor
            self._save()
        return actor

    def get(self, username: str) -> Optional[Actor]:
        """Get an actor by username."""
        return self._actors.get(username)

    def list(self) -> list[Actor]:
        """List all actors."""
        return list(self._actors.values())

    def __contains__(self, username: str) -> bool:
        return username in self._actors

    def __len__(self) -> int:
        return len(self._actors)
