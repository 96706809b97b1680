"""
Pytest fixtures for the OOB client tests.

The collaborator server is simulated with ``httpx.MockTransport`` and the
crypto provider with a fake whose "ciphertext" is plain base64, so poll
envelopes can be written by hand.
"""
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from oob_hunter.interactsh_client import InteractshClient

SERVER = "https://oast.test"


class FakeCrypto:
    """Crypto provider whose items are base64(plaintext)."""

    def __init__(self):
        self.decrypted: List[str] = []
        self._private_key: Optional[object] = None

    def encode_public_key(self) -> str:
        self._private_key = object()
        return "ZmFrZS1wdWJsaWMta2V5"

    def decrypt_message(self, shared_key: str, item: str) -> bytes:
        self.decrypted.append(item)
        return base64.b64decode(item)

    def get_private_key(self):
        return self._private_key


def wire(protocol: str = "dns", n: int = 1, **extra: Any) -> Dict[str, Any]:
    data = {
        "protocol": protocol,
        "unique-id": f"uid{n}",
        "full-id": f"uid{n}.oast.test",
        "q-type": "A",
        "raw-request": f"request {n}",
        "raw-response": f"response {n}",
        "remote-address": f"10.0.0.{n}",
        "timestamp": "2024-05-01T10:20:30.123456Z",
    }
    data.update(extra)
    return data


def item(payload: Union[Dict[str, Any], bytes]) -> str:
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return base64.b64encode(raw).decode()


def envelope(*payloads: Union[Dict[str, Any], bytes]) -> httpx.Response:
    return httpx.Response(200, json={"data": [item(p) for p in payloads], "aes_key": "c2hhcmVk"})


class FakeServer:
    """Minimal interactsh server: /register, /poll, /deregister."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.register_status = 200
        self.deregister_status = 200
        self.polls: List[Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]] = []
        self.poll_count = 0

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == path][-1]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/register":
            return httpx.Response(self.register_status, json={"message": "registration successful"})
        if path == "/poll":
            self.poll_count += 1
            if self.polls:
                nxt = self.polls.pop(0)
                return nxt(request) if callable(nxt) else nxt
            return httpx.Response(200, json={"data": [], "aes_key": ""})
        if path == "/deregister":
            return httpx.Response(self.deregister_status, text="deregistration status")
        return httpx.Response(404, text="not found")


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
async def http(server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(server.handler)) as client:
        yield client


@pytest.fixture
def crypto():
    return FakeCrypto()


@pytest.fixture
async def client(http, crypto):
    c = InteractshClient(crypto=crypto, http_client=http)
    yield c
    await c.aclose()
