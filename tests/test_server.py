# tests/test_server.py
"""End-to-end tests: real server, real HTTP, real key fetches."""

import json
from concurrent.futures import ThreadPoolExecutor
from urllib.error import HTTPError
from urllib.request import Request, urlopen

import pytest

from fedsig.activitypub.actor import ActorStore
from fedsig.activitypub.client import ACTIVITY_STREAMS_CONTENT_TYPE, Client
from fedsig.activitypub.keys import KeyResolver
from fedsig.config import FederationConfig
from fedsig.errors import TransportError
from fedsig.server import FederationServer


@pytest.fixture
def actors(user1, user2):
    store = ActorStore()
    store.add(user1)
    store.add(user2)
    return store


@pytest.fixture
def deliveries():
    return []


@pytest.fixture
def resolver(config):
    return KeyResolver.from_config(config, timeout=5)


def _start(actors, config, resolver=None, inbox_handler=None):
    server = FederationServer(
        actors,
        config,
        port=0,
        resolver=resolver,
        inbox_handler=inbox_handler,
    )
    server.start_background()
    return server


@pytest.fixture
def server(actors, config, resolver, deliveries):
    srv = _start(
        actors,
        config,
        resolver=resolver,
        inbox_handler=lambda name, result, body: deliveries.append((name, result, body)),
    )
    yield srv
    srv.shutdown()


def http(method: str, url: str, body: bytes = None, headers: dict = None):
    """Make a request; return (status, body) for any status."""
    req = Request(url, data=body, headers=headers or {}, method=method)
    try:
        with urlopen(req, timeout=10) as response:
            return response.status, response.read()
    except HTTPError as e:
        return e.code, e.read()


def user_url(server, username: str) -> str:
    return f"{server.base_url}/api/v1/activitypub/user/{username}"


class TestPerson:
    """Test actor documents."""

    def test_person(self, server):
        """Existing user is served as a Person with a PEM public key."""
        status, body = http("GET", user_url(server, "user2"))
        assert status == 200
        assert "@context" in body.decode()

        person = json.loads(body)
        assert person["type"] == "Person"
        assert person["preferredUsername"] == "user2"
        assert person["id"].endswith("activitypub/user/user2")
        assert person["outbox"].endswith("activitypub/user/user2/outbox")
        assert person["inbox"].endswith("activitypub/user/user2/inbox")
        assert person["publicKey"]["id"] == person["id"] + "#main-key"
        assert person["publicKey"]["publicKeyPem"].startswith("-----BEGIN PUBLIC KEY-----")

    def test_person_content_type(self, server):
        """Actor documents use the ActivityStreams content type."""
        with urlopen(user_url(server, "user1"), timeout=10) as response:
            assert response.headers["Content-Type"] == ACTIVITY_STREAMS_CONTENT_TYPE

    def test_missing_person(self, server):
        """Unknown users are 404 with a descriptive message."""
        status, body = http("GET", user_url(server, "nonexistentuser"))
        assert status == 404
        assert "user redirect does not exist" in body.decode()

    def test_unknown_route(self, server):
        """Paths outside the federation API are 404."""
        status, _ = http("GET", f"{server.base_url}/somewhere/else")
        assert status == 404


class TestInbox:
    """Test deliveries to an inbox."""

    def test_signed_request_succeeds(self, server, user1, deliveries):
        """user1 delivers an empty signed POST to user2's inbox: 204 No Content."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        response = client.post(b"", f"{user_url(server, 'user2')}/inbox")

        assert response.status == 204
        assert response.body == b""
        assert len(deliveries) == 1
        name, result, body = deliveries[0]
        assert name == "user2"
        assert result.actor_id == user_url(server, "user1")
        assert body == b""

    def test_unsigned_request_fails(self, server, deliveries):
        """An unsigned POST is a server error and nothing is delivered."""
        status, body = http("POST", f"{user_url(server, 'user2')}/inbox", body=b"")
        assert status == 500
        assert "missing_headers" in body.decode()
        assert deliveries == []

    def test_payload_delivered(self, server, user1, deliveries):
        """The accepted body reaches the inbox handler unchanged."""
        activity = json.dumps({"type": "Create", "actor": user_url(server, "user1")}).encode()
        client = Client(user1, user1.key_id(server.base_url), server.config)
        client.post(activity, f"{user_url(server, 'user2')}/inbox")
        assert deliveries[0][2] == activity

    def test_tampered_request_fails(self, server, user1, deliveries):
        """A body changed in transit is rejected with a server error."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        request = client.new_request(b'{"type":"Like"}', f"{user_url(server, 'user2')}/inbox")
        request.body = b'{"type":"Undo"}'

        with pytest.raises(TransportError) as exc_info:
            client.send(request)
        assert exc_info.value.status == 500
        assert b"digest_mismatch" in exc_info.value.body
        assert deliveries == []

    def test_inbox_of_missing_user(self, server, user1):
        """Delivering to an unknown user is 404."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        with pytest.raises(TransportError) as exc_info:
            client.post(b"", f"{user_url(server, 'nobody')}/inbox")
        assert exc_info.value.status == 404

    def test_key_fetched_once(self, server, user1, resolver):
        """Repeated deliveries reuse the cached key."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        for _ in range(3):
            client.post(b"{}", f"{user_url(server, 'user2')}/inbox")
        assert user1.key_id(server.base_url) in resolver
        assert resolver.stats.fetches == 1

    def test_concurrent_deliveries(self, server, user1, resolver, deliveries):
        """Parallel deliveries all verify, sharing one key fetch."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        inbox = f"{user_url(server, 'user2')}/inbox"

        with ThreadPoolExecutor(max_workers=8) as pool:
            responses = list(pool.map(lambda i: client.post(f'{{"n":{i}}}'.encode(), inbox), range(16)))

        assert [r.status for r in responses] == [204] * 16
        assert len(deliveries) == 16
        assert resolver.stats.fetches == 1

    def test_signed_get(self, server, user1):
        """Signed GETs fetch actor documents too."""
        client = Client(user1, user1.key_id(server.base_url), server.config)
        response = client.get(user_url(server, "user2"))
        assert json.loads(response.body)["preferredUsername"] == "user2"


class TestLimits:
    """Test federation switches and size limits."""

    def test_disabled(self, actors, user1):
        """With federation disabled every route is 404."""
        srv = _start(actors, FederationConfig(enabled=False))
        try:
            status, _ = http("GET", user_url(srv, "user1"))
            assert status == 404
            status, _ = http("POST", f"{user_url(srv, 'user2')}/inbox", body=b"")
            assert status == 404
        finally:
            srv.shutdown()

    def test_oversize_body(self, actors, user1):
        """Bodies over max_size are refused with 413."""
        srv = _start(actors, FederationConfig(max_size=64))
        try:
            client = Client(user1, user1.key_id(srv.base_url), FederationConfig())
            with pytest.raises(TransportError) as exc_info:
                client.post(b"x" * 65, f"{user_url(srv, 'user2')}/inbox")
            assert exc_info.value.status == 413
        finally:
            srv.shutdown()

    def test_authorized_key_fetch(self, actors, user1, user2):
        """The inbox can sign its own key fetches."""
        config = FederationConfig()
        srv = FederationServer(actors, config, port=0)
        srv.bind()
        fetcher = Client(user2, user2.key_id(srv.base_url), config)
        srv.verifier.resolver.client = fetcher
        srv.start_background()
        try:
            client = Client(user1, user1.key_id(srv.base_url), config)
            assert client.post(b"", f"{user_url(srv, 'user2')}/inbox").status == 204
        finally:
            srv.shutdown()


class TestConstruction:
    """Test server wiring."""

    def test_resolver_is_kept(self, actors, config):
        """An empty resolver passed in is the one inbox verification uses."""
        resolver = KeyResolver()
        srv = FederationServer(actors, config, port=0, resolver=resolver)
        assert srv.verifier.resolver is resolver

    def test_default_resolver(self, actors, config):
        """Without a resolver one is built from the settings."""
        srv = FederationServer(actors, config, port=0)
        assert srv.verifier.resolver.max_size == config.key_cache_size
