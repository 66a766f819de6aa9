# Tests for auth/listener.py - loopback port selection and release
# Created: 2026-10-08

import pytest

from melodex.auth.errors import NoPortAvailableError
from melodex.auth.listener import LoopbackListenerManager


@pytest.fixture
def manager():
    mgr = LoopbackListenerManager()
    yield mgr
    mgr.release()


class TestAcquire:
    def test_binds_first_free_port(self, manager, free_ports):
        ports = free_ports(3)
        listener, port = manager.acquire(ports)
        assert port == ports[0]
        assert listener.port == port
        assert listener.host == "127.0.0.1"
        assert manager.bound_port == port

    def test_skips_occupied_ports(self, manager, free_ports, occupy):
        ports = free_ports(3)
        occupy(ports[0])
        occupy(ports[1])
        _, port = manager.acquire(ports)
        assert port == ports[2]

    def test_all_ports_occupied(self, manager, free_ports, occupy):
        ports = free_ports(2)
        for port in ports:
            occupy(port)
        with pytest.raises(NoPortAvailableError) as exc_info:
            manager.acquire(ports)
        assert exc_info.value.ports == tuple(ports)
        assert str(ports[0]) in str(exc_info.value)
        assert manager.current is None

    def test_reacquire_closes_previous_listener(self, manager, free_ports):
        ports = free_ports(1)
        first, _ = manager.acquire(ports)
        second, port = manager.acquire(ports)
        assert first.closed
        assert not second.closed
        assert port == ports[0]


class TestRelease:
    def test_release_frees_port(self, manager, free_ports, port_is_free):
        ports = free_ports(1)
        listener, port = manager.acquire(ports)
        manager.release()
        assert listener.closed
        assert manager.current is None
        assert port_is_free(port)

    def test_release_is_idempotent(self, manager, free_ports):
        manager.acquire(free_ports(1))
        manager.release()
        manager.release()
        assert manager.current is None

    def test_rebind_after_release(self, manager, free_ports):
        ports = free_ports(1)
        manager.acquire(ports)
        manager.release()
        _, port = manager.acquire(ports)
        assert port == ports[0]

    def test_stale_release_leaves_successor_bound(self, manager, free_ports):
        ports = free_ports(2)
        stale, _ = manager.acquire(ports[:1])
        current, _ = manager.acquire(ports[1:])
        manager.release(stale)
        assert manager.current is current
        assert not current.closed

    def test_accept_nowait_without_connection(self, manager, free_ports):
        listener, _ = manager.acquire(free_ports(1))
        assert listener.accept_nowait() is None
