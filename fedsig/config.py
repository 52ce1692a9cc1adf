# fedsig/config.py
"""
Federation settings.

A FederationConfig is built once at startup (from YAML or defaults),
validated, and then passed by reference to every Client and Verifier.
It is frozen: nothing changes it after load.

Example config file:

    federation:
      enabled: true
      max_size: 4            # MiB
      algorithms: [rsa-sha256, rsa-sha512, ed25519]
      digest_algorithm: SHA-256
      get_headers: ["(request-target)", "Date"]
      post_headers: ["(request-target)", "Date", "Digest"]
      max_clock_skew: 300    # seconds
      key_cache_ttl: 3600    # seconds
      key_cache_size: 1024
      request_timeout: 30    # seconds
      share_user_statistics: true
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import yaml

from .errors import ConfigError, FatalConfigError
from .httpsig import (
    REQUEST_TARGET,
    Algorithm,
    DigestAlgorithm,
    parse_algorithm,
    parse_digest_algorithm,
)

logger = logging.getLogger(__name__)

MIB = 1 << 20


@dataclass(frozen=True)
class FederationConfig:
    """
    Immutable federation settings.

    Attributes:
        enabled: Serve and accept federation traffic
        max_size: Largest accepted payload, in bytes
        algorithms: Acceptable signature algorithm names, in preference order
        digest_algorithm: Digest algorithm name for the Digest header
        get_headers: Headers covered by signatures on GET requests, in order
        post_headers: Headers covered by signatures on POST requests, in order
        max_clock_skew: Largest accepted distance between Date and now, in seconds
        key_cache_ttl: Seconds a resolved public key stays cached
        key_cache_size: Most public keys kept in the cache
        request_timeout: Timeout for deliveries and key fetches, in seconds
        share_user_statistics: Publish instance user statistics to peers
    """
    enabled: bool = True
    max_size: int = 4 * MIB
    algorithms: Tuple[str, ...] = ("rsa-sha256", "rsa-sha512", "ed25519")
    digest_algorithm: str = "SHA-256"
    get_headers: Tuple[str, ...] = (REQUEST_TARGET, "Date")
    post_headers: Tuple[str, ...] = (REQUEST_TARGET, "Date", "Digest")
    max_clock_skew: float = 300.0
    key_cache_ttl: float = 3600.0
    key_cache_size: int = 1024
    request_timeout: float = 30.0
    share_user_statistics: bool = True

    @property
    def signature_algorithms(self) -> Tuple[Algorithm, ...]:
        """Acceptable algorithms, parsed, in preference order."""
        return tuple(parse_algorithm(name) for name in self.algorithms)

    @property
    def digest(self) -> DigestAlgorithm:
        return parse_digest_algorithm(self.digest_algorithm)

    def headers_for(self, method: str) -> Tuple[str, ...]:
        """Required signed headers for an HTTP method."""
        if method.upper() == "GET":
            return self.get_headers
        return self.post_headers

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FederationConfig":
        """
        Build a config from a settings mapping.

        Accepts either the settings themselves or a mapping with a
        "federation" section. max_size is given in MiB and stored in bytes.

        Raises:
            FatalConfigError: On unknown keys or wrongly typed values
        """
        if data is None:
            data = {}
        if "federation" in data:
            data = data["federation"] or {}
        if not isinstance(data, dict):
            raise FatalConfigError("federation settings must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise FatalConfigError(f"unknown federation settings: {', '.join(unknown)}")

        kwargs: Dict[str, Any] = {}
        try:
            if "enabled" in data:
                kwargs["enabled"] = _as_bool(data["enabled"])
            if "share_user_statistics" in data:
                kwargs["share_user_statistics"] = _as_bool(data["share_user_statistics"])
            if "max_size" in data:
                kwargs["max_size"] = int(data["max_size"]) * MIB
            for name in ("algorithms", "get_headers", "post_headers"):
                if name in data:
                    kwargs[name] = _as_names(name, data[name])
            if "digest_algorithm" in data:
                kwargs["digest_algorithm"] = str(data["digest_algorithm"])
            for name in ("max_clock_skew", "key_cache_ttl", "request_timeout"):
                if name in data:
                    kwargs[name] = float(data[name])
            if "key_cache_size" in data:
                kwargs["key_cache_size"] = int(data["key_cache_size"])
        except (TypeError, ValueError) as e:
            raise FatalConfigError(f"failed to map federation settings: {e}") from e

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "FederationConfig":
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise FatalConfigError(f"failed to parse federation settings: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "FederationConfig":
        with open(path) as f:
            return cls.from_yaml(f.read())


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "on", "1"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _as_names(setting: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.replace(",", " ").split()
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{setting} must be a list of names")
    return tuple(str(v).strip() for v in value)


def check_required_headers(method: str, headers: Sequence[str]) -> None:
    """
    Check that a signed header list is complete for an HTTP method.

    Every method needs (request-target) and Date; methods other than GET
    also need Digest. Names compare case-insensitively.

    Raises:
        ConfigError: Naming the first missing header
    """
    names = {h.lower() for h in headers}
    if REQUEST_TARGET not in names:
        raise ConfigError(f"missing http header for {method}: {REQUEST_TARGET}")
    if "date" not in names:
        raise ConfigError(f"missing http header for {method}: Date")
    if "digest" not in names and method.upper() != "GET":
        raise ConfigError(f"missing http header for {method}: Digest")


def validate(config: FederationConfig) -> None:
    """
    Validate federation settings at startup.

    Raises:
        FatalConfigError: If signing or verification would be incomplete
    """
    try:
        check_required_headers("GET", config.get_headers)
        check_required_headers("POST", config.post_headers)
    except ConfigError as e:
        raise FatalConfigError(str(e)) from e

    try:
        config.digest
    except ValueError:
        raise FatalConfigError(f"unsupported digest algorithm: {config.digest_algorithm}")

    if not config.algorithms:
        raise FatalConfigError("no signature algorithms configured")
    try:
        config.signature_algorithms
    except ValueError as e:
        raise FatalConfigError(str(e)) from e

    if config.max_size <= 0:
        raise FatalConfigError(f"max_size must be positive, got {config.max_size} bytes")
    if config.max_clock_skew < 0:
        raise FatalConfigError("max_clock_skew must not be negative")
    if config.key_cache_size <= 0:
        raise FatalConfigError("key_cache_size must be positive")
    if config.request_timeout <= 0:
        raise FatalConfigError("request_timeout must be positive")


def load_config(path: Optional[Path | str] = None) -> FederationConfig:
    """
    Load and validate federation settings.

    Args:
        path: YAML settings file; defaults are used when omitted

    Raises:
        FatalConfigError: If the settings are invalid
    """
    if path is None:
        config = FederationConfig()
    else:
        try:
            config = FederationConfig.from_file(path)
        except OSError as e:
            raise FatalConfigError(f"cannot read federation settings {path}: {e}") from e
    validate(config)
    logger.debug(
        f"Federation settings: enabled={config.enabled} digest={config.digest_algorithm} "
        f"algorithms={','.join(config.algorithms)} max_size={config.max_size}"
    )
    return config
