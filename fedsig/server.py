# fedsig/server.py
"""
HTTP server for the federation endpoints.

Endpoints:
    GET  /api/v1/activitypub/user/:name        - Actor (Person) document
    POST /api/v1/activitypub/user/:name/inbox  - Signed delivery

Inbox responses:
    204 - signature verified, delivery accepted
    404 - no such user
    413 - body larger than the configured max size
    500 - request unsigned or signature rejected

Every request runs on its own thread, so an inbox can fetch the signer's
key from this same server while verifying.
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlparse

from .activitypub.actor import ACTIVITYPUB_PATH, ActorStore
from .activitypub.client import ACTIVITY_STREAMS_CONTENT_TYPE
from .activitypub.keys import KeyResolver
from .activitypub.verifier import VerificationResult, Verifier
from .config import FederationConfig

logger = logging.getLogger(__name__)

# Called for each accepted delivery with (username, result, body)
InboxHandler = Callable[[str, VerificationResult, bytes], None]


class FederationServer:
    """
    HTTP server for actor documents and inboxes.

    Usage:
        server = FederationServer(actors, config, port=8080)
        server.start()  # Blocking

    Args:
        actors: Local actors to serve
        config: Validated federation settings
        host: Host to bind to
        port: Port to bind to (0 picks a free port)
        base_url: Public URL of this server; defaults to http://host:port
        resolver: Key resolver shared by inbox verifications
        inbox_handler: Receives accepted deliveries
    """

    def __init__(
        self,
        actors: ActorStore,
        config: FederationConfig,
        host: str = "127.0.0.1",
        port: int = 8080,
        base_url: Optional[str] = None,
        resolver: Optional[KeyResolver] = None,
        inbox_handler: Optional[InboxHandler] = None,
    ):
        self.actors = actors
        self.config = config
        self.host = host
        self.port = port
        if resolver is None:
            resolver = KeyResolver.from_config(config)
        self.verifier = Verifier(config, resolver)
        self.inbox_handler = inbox_handler
        self._base_url = base_url.rstrip("/") if base_url else None
        self._httpd: Optional[ThreadingHTTPServer] = None

    @property
    def base_url(self) -> str:
        if self._base_url:
            return self._base_url
        return f"http://{self.host}:{self.port}"

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200, content_type: str = "application/json"):
                body = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _send_error(self, message: str, status: int = 400):
                self._send_json({"message": message}, status)

            def _send_no_content(self):
                self.send_response(204)
                self.end_headers()

            def _route(self):
                """Split the path into (username, rest) under the ActivityPub prefix."""
                path = urlparse(self.path).path
                prefix = ACTIVITYPUB_PATH + "/"
                if not path.startswith(prefix):
                    return None, None
                name, _, rest = path[len(prefix):].partition("/")
                return unquote(name), rest

            def do_GET(self):
                srv = self.server_ref
                name, rest = self._route()
                if name is None or not srv.config.enabled:
                    self._send_error("Not found", 404)
                    return

                actor = srv.actors.get(name)
                if actor is None:
                    self._send_error(f"user redirect does not exist [name: {name}]", 404)
                    return

                if rest == "":
                    self._send_json(
                        actor.to_activitypub(srv.base_url),
                        content_type=ACTIVITY_STREAMS_CONTENT_TYPE,
                    )
                else:
                    self._send_error("Not found", 404)

            def do_POST(self):
                srv = self.server_ref
                name, rest = self._route()
                if name is None or rest != "inbox" or not srv.config.enabled:
                    self._send_error("Not found", 404)
                    return

                if srv.actors.get(name) is None:
                    self._send_error(f"user redirect does not exist [name: {name}]", 404)
                    return

                try:
                    content_length = int(self.headers.get("Content-Length", 0))
                except ValueError:
                    self._send_error("Invalid Content-Length")
                    return
                if content_length > srv.config.max_size:
                    self._send_error(
                        f"payload exceeds max size of {srv.config.max_size} bytes", 413
                    )
                    return
                body = self.rfile.read(content_length)

                try:
                    result = srv.verifier.verify("POST", self.path, self.headers, body)
                except Exception as e:
                    logger.exception(f"Verification of delivery to {name} failed")
                    self._send_error(f"verification failed: {e}", 500)
                    return

                if not result.accepted:
                    self._send_error(f"{result.reason.value}: {result.message}", 500)
                    return

                logger.info(f"Accepted delivery to {name} from {result.actor_id}")
                if srv.inbox_handler is not None:
                    try:
                        srv.inbox_handler(name, result, body)
                    except Exception as e:
                        logger.exception(f"Inbox handler for {name} failed")
                        self._send_error(str(e), 500)
                        return
                self._send_no_content()

        return RequestHandler

    def bind(self) -> ThreadingHTTPServer:
        """Bind the listening socket; resolves port 0 to the real port."""
        if self._httpd is None:
            handler = self._create_handler()
            self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
            self._httpd.daemon_threads = True
            self.port = self._httpd.server_address[1]
        return self._httpd

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self.bind()
        logger.info(f"Federation server starting on {self.host}:{self.port} ({self.base_url})")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            httpd.server_close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread."""
        self.bind()
        thread = threading.Thread(target=self.start)
        thread.daemon = True
        thread.start()
        return thread

    def shutdown(self):
        """Stop a server started with start_background()."""
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd = None
