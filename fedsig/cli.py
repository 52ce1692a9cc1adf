#!/usr/bin/env python3
"""
fedsig CLI

Commands for running and exercising the federation endpoints:
  fedsig check-config - Validate federation settings
  fedsig create-actor - Create a local actor with a new key pair
  fedsig actor - Print an actor's Person document
  fedsig serve - Serve actor documents and inboxes
  fedsig deliver - Sign and POST an activity to a remote inbox

Usage:
  fedsig check-config [-c <settings.yaml>]
  fedsig create-actor <username> [--display-name <name>] [--key-type rsa|ed25519]
  fedsig actor <username> [--base-url <url>]
  fedsig serve [--host <host>] [--port <port>] [--base-url <url>]
  fedsig deliver <username> <inbox-url> [-f <activity.json>] [--proxy <url>]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import FederationConfig, load_config
from .errors import FatalConfigError, FederationError

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = Path.home() / ".fedsig"


def _config(args) -> FederationConfig:
    return load_config(args.config)


def _store(args):
    from .activitypub.actor import ActorStore
    return ActorStore(Path(args.store_dir) if args.store_dir else DEFAULT_STORE_DIR)


def cmd_check_config(args):
    """Validate settings and print the effective values."""
    config = _config(args)
    print(f"Enabled: {config.enabled}")
    print(f"Max size: {config.max_size} bytes")
    print(f"Digest algorithm: {config.digest_algorithm}")
    print(f"Signature algorithms: {', '.join(config.algorithms)}")
    print(f"GET headers: {' '.join(config.get_headers)}")
    print(f"POST headers: {' '.join(config.post_headers)}")
    print(f"Share user statistics: {config.share_user_statistics}")
    print("OK")


def cmd_create_actor(args):
    """Create a local actor."""
    store = _store(args)
    actor = store.create(args.username, args.display_name, key_type=args.key_type)
    print(f"Created actor {actor.username} ({args.key_type})")
    print(f"Key ID: {actor.key_id(args.base_url)}")


def cmd_actor(args):
    """Print an actor's Person document."""
    store = _store(args)
    actor = store.get(args.username)
    if actor is None:
        print(f"Error: user redirect does not exist [name: {args.username}]", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(actor.to_activitypub(args.base_url), indent=2))


def cmd_serve(args):
    """Run the federation server."""
    from .server import FederationServer

    config = _config(args)
    if not config.enabled:
        logger.warning("Federation is disabled; all federation routes will return 404")

    server = FederationServer(
        actors=_store(args),
        config=config,
        host=args.host,
        port=args.port,
        base_url=args.base_url,
    )
    server.start()


def cmd_deliver(args):
    """Sign and deliver an activity."""
    from .activitypub.client import Client

    config = _config(args)
    store = _store(args)
    actor = store.get(args.username)
    if actor is None:
        print(f"Error: user redirect does not exist [name: {args.username}]", file=sys.stderr)
        sys.exit(1)

    if args.file:
        body = Path(args.file).read_bytes()
    else:
        body = sys.stdin.buffer.read()

    client = Client(actor, actor.key_id(args.base_url), config, proxy=args.proxy)
    response = client.post(body, args.inbox)
    print(f"Delivered to {args.inbox}: HTTP {response.status}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="fedsig",
        description="fedsig - HTTP Signatures for ActivityPub federation",
    )
    parser.add_argument("-c", "--config", help="Federation settings YAML file")
    parser.add_argument("--store-dir", help=f"Actor store directory (default: {DEFAULT_STORE_DIR})")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080",
                        help="Public URL of this server")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("check-config", help="Validate federation settings")

    create_parser = subparsers.add_parser("create-actor", help="Create a local actor")
    create_parser.add_argument("username", help="Actor username")
    create_parser.add_argument("--display-name", help="Display name (default: username)")
    create_parser.add_argument("--key-type", choices=["rsa", "ed25519"], default="rsa",
                               help="Signing key type")

    actor_parser = subparsers.add_parser("actor", help="Print an actor's Person document")
    actor_parser.add_argument("username", help="Actor username")

    serve_parser = subparsers.add_parser("serve", help="Serve actor documents and inboxes")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind to")

    deliver_parser = subparsers.add_parser("deliver", help="Sign and POST an activity")
    deliver_parser.add_argument("username", help="Sending actor")
    deliver_parser.add_argument("inbox", help="Remote inbox URL")
    deliver_parser.add_argument("-f", "--file", help="Activity JSON file (default: stdin)")
    deliver_parser.add_argument("--proxy", help="Outbound proxy URL")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    commands = {
        "check-config": cmd_check_config,
        "create-actor": cmd_create_actor,
        "actor": cmd_actor,
        "serve": cmd_serve,
        "deliver": cmd_deliver,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)

    try:
        command(args)
    except FatalConfigError as e:
        logger.critical(f"Invalid federation settings: {e}")
        sys.exit(1)
    except (FederationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
