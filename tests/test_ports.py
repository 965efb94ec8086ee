import random
import socket

import pytest

from udpxfer.transfer.ports import PortAllocator


class FixedRandom(random.Random):
    """Always proposes the same port."""

    def __init__(self, port):
        super().__init__()
        self.port = port

    def randrange(self, start, stop=None, step=1):
        return self.port


def test_allocates_inside_range():
    allocator = PortAllocator('127.0.0.1')
    for _ in range(20):
        port = allocator.allocate()
        assert port is not None
        assert 50000 <= port < 51000


def test_allocated_port_is_released():
    allocator = PortAllocator('127.0.0.1')
    port = allocator.allocate()

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(('127.0.0.1', port))
    finally:
        sock.close()


def test_busy_port_is_skipped():
    allocator = PortAllocator('127.0.0.1')
    port = allocator.allocate()

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(('127.0.0.1', port))
    try:
        allocator.rng = FixedRandom(port)
        assert allocator.allocate() is None
    finally:
        sock.close()

    assert allocator.allocate() == port


def test_probe_budget_is_bounded():
    probed = []

    class Busy(PortAllocator):
        def _probe(self, port):
            probed.append(port)
            return False

    allocator = Busy('127.0.0.1', attempts=10)
    assert allocator.allocate() is None
    assert len(probed) == 10


def test_invalid_range_rejected():
    with pytest.raises(ValueError):
        PortAllocator(port_range=(51000, 50000))
    with pytest.raises(ValueError):
        PortAllocator(port_range=(0, 100))
