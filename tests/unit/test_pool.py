"""
Unit tests for ConnectionPool.
"""

import threading
import time

import pytest

from protocol_bench.errors import ConnectFailure, PoolClosed, PoolTimeout
from protocol_bench.pool import ConnectionPool
from protocol_bench.profile import PoolLimits


class Handles:
    """Connect/close callables that count physical connections."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.opened = 0
        self.closed = []
        self.lock = threading.Lock()

    def connect(self):
        if self.fail:
            raise OSError("connection refused")
        with self.lock:
            self.opened += 1
            return self.opened

    def close(self, conn):
        with self.lock:
            self.closed.append(conn.handle)


def make_pool(handles, **limits):
    defaults = dict(max_open=2, max_idle=2, acquire_timeout=1.0)
    defaults.update(limits)
    return ConnectionPool(handles.connect, handles.close, PoolLimits(**defaults), name="test")


class TestAcquireRelease:
    def test_idle_connection_reused(self):
        handles = Handles()
        pool = make_pool(handles)

        first = pool.acquire()
        pool.release(first)
        second = pool.acquire()

        assert second is first
        assert handles.opened == 1

    def test_opens_up_to_max_open(self):
        handles = Handles()
        pool = make_pool(handles, max_open=2)

        a, b = pool.acquire(), pool.acquire()

        assert a.handle != b.handle
        assert pool.stats().open == 2
        assert pool.stats().in_use == 2

    def test_acquire_times_out_at_ceiling(self):
        """Pool never exceeds max_open; waiters time out as QueryFailure"""
        handles = Handles()
        pool = make_pool(handles, max_open=1, max_idle=1, acquire_timeout=0.05)
        pool.acquire()

        with pytest.raises(PoolTimeout):
            pool.acquire()
        assert handles.opened == 1

    def test_waiter_receives_released_connection(self):
        handles = Handles()
        pool = make_pool(handles, max_open=1, max_idle=1, acquire_timeout=2.0)
        held = pool.acquire()
        got = []

        waiter = threading.Thread(target=lambda: got.append(pool.acquire()))
        waiter.start()
        time.sleep(0.05)
        pool.release(held)
        waiter.join(timeout=2.0)

        assert got == [held]

    def test_surplus_connection_closed_beyond_max_idle(self):
        handles = Handles()
        pool = make_pool(handles, max_open=2, max_idle=1)
        a, b = pool.acquire(), pool.acquire()

        pool.release(a)
        pool.release(b)

        assert pool.stats().idle == 1
        assert pool.stats().open == 1
        assert handles.closed == [b.handle]

    def test_broken_connection_discarded(self):
        handles = Handles()
        pool = make_pool(handles)
        conn = pool.acquire()

        pool.release(conn, broken=True)

        assert pool.stats().open == 0
        assert handles.closed == [conn.handle]

    def test_expired_connection_replaced(self):
        handles = Handles()
        pool = make_pool(handles, max_lifetime=0.01)
        conn = pool.acquire()
        pool.release(conn)
        time.sleep(0.02)

        fresh = pool.acquire()

        assert fresh.handle != conn.handle
        assert conn.handle in handles.closed

    def test_connect_error_releases_slot(self):
        handles = Handles(fail=True)
        pool = make_pool(handles, max_open=1, max_idle=1)

        with pytest.raises(ConnectFailure):
            pool.acquire()

        stats = pool.stats()
        assert stats.open == 0
        assert stats.in_use == 0


class TestClose:
    def test_close_drains_idle(self):
        handles = Handles()
        pool = make_pool(handles)
        a, b = pool.acquire(), pool.acquire()
        pool.release(a)
        pool.release(b)

        pool.close()

        assert pool.stats().open == 0
        assert sorted(handles.closed) == sorted([a.handle, b.handle])

    def test_in_use_connection_closed_on_release(self):
        handles = Handles()
        pool = make_pool(handles)
        conn = pool.acquire()

        pool.close()
        assert handles.closed == []
        pool.release(conn)

        assert handles.closed == [conn.handle]
        assert pool.stats().open == 0

    def test_close_is_idempotent(self):
        handles = Handles()
        pool = make_pool(handles)
        pool.release(pool.acquire())

        pool.close()
        pool.close()

        assert len(handles.closed) == 1

    def test_acquire_after_close_fails(self):
        pool = make_pool(Handles())
        pool.close()

        with pytest.raises(PoolClosed):
            pool.acquire()


class TestConcurrency:
    def test_concurrent_workers_respect_ceiling(self):
        """In-use count never exceeds max_open under contention"""
        handles = Handles()
        pool = make_pool(handles, max_open=3, max_idle=3, acquire_timeout=5.0)
        peak = []
        lock = threading.Lock()
        in_use = [0]

        def work():
            for _ in range(50):
                conn = pool.acquire()
                with lock:
                    in_use[0] += 1
                    peak.append(in_use[0])
                time.sleep(0.0005)
                with lock:
                    in_use[0] -= 1
                pool.release(conn)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max(peak) <= 3
        assert handles.opened <= 3
        assert pool.stats().in_use == 0
