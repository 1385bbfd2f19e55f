"""
Tests for display / port allocation (deskbroker.domain.allocator).
"""

import socket
import threading

import pytest

from deskbroker.config.models import AllocatorConfig
from deskbroker.domain.allocator import ResourceAllocator, is_port_free
from deskbroker.domain.errors import AllocationExhausted


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

class TestAllocate:

    def test_first_allocation_uses_bases(self):
        alloc = ResourceAllocator().allocate()
        assert alloc.display == 100
        assert alloc.export_port == 5900
        assert alloc.bridge_port == 6080
        assert alloc.offset == 0

    def test_sequential_allocations_step_by_one(self):
        allocator = ResourceAllocator()
        allocs = [allocator.allocate() for _ in range(3)]
        assert [a.display for a in allocs] == [100, 101, 102]
        assert [a.export_port for a in allocs] == [5900, 5901, 5902]
        assert [a.bridge_port for a in allocs] == [6080, 6081, 6082]

    def test_custom_bases(self):
        allocator = ResourceAllocator(display_base=20, export_port_base=15900, bridge_port_base=16080)
        alloc = allocator.allocate()
        assert (alloc.display, alloc.export_port, alloc.bridge_port) == (20, 15900, 16080)

    def test_from_settings(self):
        cfg = AllocatorConfig(display_base=50, max_sessions=2, reclaim=False)
        allocator = ResourceAllocator.from_settings(cfg)
        assert allocator.display_base == 50
        assert allocator.max_sessions == 2
        assert allocator.reclaim is False

    def test_concurrent_allocations_are_distinct(self):
        allocator = ResourceAllocator()
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(25):
                alloc = allocator.allocate()
                with lock:
                    results.append(alloc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 200
        assert len({a.display for a in results}) == 200
        assert len({a.export_port for a in results}) == 200
        assert len({a.bridge_port for a in results}) == 200
        assert allocator.in_use == 200


# ---------------------------------------------------------------------------
# Release / reclaim
# ---------------------------------------------------------------------------

class TestRelease:

    def test_released_offset_is_reused_lowest_first(self):
        allocator = ResourceAllocator()
        a0, a1, a2 = (allocator.allocate() for _ in range(3))
        allocator.release(a2)
        allocator.release(a0)
        assert allocator.allocate().display == 100
        assert allocator.allocate().display == 102
        assert allocator.allocate().display == 103

    def test_release_twice_is_noop(self):
        allocator = ResourceAllocator()
        alloc = allocator.allocate()
        allocator.release(alloc)
        allocator.release(alloc)
        assert allocator.in_use == 0
        first = allocator.allocate()
        second = allocator.allocate()
        assert first.display != second.display

    def test_no_reclaim_is_monotonic(self):
        allocator = ResourceAllocator(reclaim=False)
        alloc = allocator.allocate()
        allocator.release(alloc)
        assert allocator.allocate().display == 101


# ---------------------------------------------------------------------------
# Limits and probing
# ---------------------------------------------------------------------------

class TestLimits:

    def test_max_sessions_exhausted(self):
        allocator = ResourceAllocator(max_sessions=2)
        allocator.allocate()
        allocator.allocate()
        with pytest.raises(AllocationExhausted) as exc_info:
            allocator.allocate()
        assert exc_info.value.limit == 2

    def test_release_frees_capacity(self):
        allocator = ResourceAllocator(max_sessions=1)
        alloc = allocator.allocate()
        allocator.release(alloc)
        assert allocator.allocate().display == 100

    def test_probe_skips_busy_offsets(self, mocker):
        mocker.patch(
            "deskbroker.domain.allocator.is_port_free",
            side_effect=lambda port, host="0.0.0.0": port not in (5900, 6080),
        )
        allocator = ResourceAllocator(probe_ports=True)
        alloc = allocator.allocate()
        assert alloc.display == 101
        assert alloc.bridge_port == 6081

    def test_skipped_offset_is_retried_once_ports_free(self, mocker):
        busy = {5900, 6080}
        mocker.patch(
            "deskbroker.domain.allocator.is_port_free",
            side_effect=lambda port, host="0.0.0.0": port not in busy,
        )
        allocator = ResourceAllocator(probe_ports=True)
        assert allocator.allocate().display == 101
        busy.clear()
        assert allocator.allocate().display == 100

    def test_skipped_offset_keeps_capacity(self, mocker):
        busy = {5900, 6080}
        mocker.patch(
            "deskbroker.domain.allocator.is_port_free",
            side_effect=lambda port, host="0.0.0.0": port not in busy,
        )
        allocator = ResourceAllocator(max_sessions=1, probe_ports=True)
        with pytest.raises(AllocationExhausted):
            allocator.allocate()
        busy.clear()
        assert allocator.allocate().display == 100

    def test_is_port_free_detects_bound_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]
            assert is_port_free(port, host="127.0.0.1") is False
