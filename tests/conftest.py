# Shared fixtures for the melodex test suite.
# Created: 2026-10-08

import copy
import socket
from contextlib import ExitStack

import pytest

from melodex.auth.credential_store import CredentialStore
from melodex.config import parse_client_configs

VALID_CONFIG = {
    "spotify": {
        "client_id": "0123456789abcdef0123456789abcdef",
        "client_secret": "fedcba9876543210fedcba9876543210",
    },
    "osu": {"client_id": "12345", "client_secret": "s" * 40},
}


@pytest.fixture
def valid_config():
    return copy.deepcopy(VALID_CONFIG)


@pytest.fixture
def client_configs(valid_config):
    return parse_client_configs(valid_config)


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "login_info.json")


@pytest.fixture
def free_ports():
    """Return ``count`` distinct loopback ports that were free a moment ago."""

    def _free_ports(count: int) -> list[int]:
        with ExitStack() as stack:
            ports = []
            for _ in range(count):
                sock = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
                sock.bind(("127.0.0.1", 0))
                ports.append(sock.getsockname()[1])
        return ports

    return _free_ports


@pytest.fixture
def port_is_free():
    def _port_is_free(port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind(("127.0.0.1", port))
            except OSError:
                return False
        return True

    return _port_is_free


@pytest.fixture
def occupy():
    """Hold loopback ports with listening sockets for the duration of a test."""
    held: list[socket.socket] = []

    def _occupy(port: int) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", port))
        sock.listen(1)
        held.append(sock)
        return sock

    yield _occupy
    for sock in held:
        sock.close()
