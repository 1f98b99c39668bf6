from __future__ import annotations

import threading

from authgraph.locking import HIERARCHY_KEY, KeyedLock


def test_hold_is_reentrant_and_ignores_empty_keys() -> None:
    locks = KeyedLock()

    with locks.hold("a", "a", None, ""):
        with locks.hold("a", HIERARCHY_KEY):
            pass


def test_hold_serializes_shared_keys() -> None:
    locks = KeyedLock()
    counter = {"value": 0}

    def work() -> None:
        for _ in range(200):
            with locks.hold("item"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert counter["value"] == 800


def test_opposite_key_order_does_not_deadlock() -> None:
    locks = KeyedLock()
    done: list[str] = []

    def forward() -> None:
        for _ in range(100):
            with locks.hold("x", "y"):
                pass
        done.append("forward")

    def backward() -> None:
        for _ in range(100):
            with locks.hold("y", "x"):
                pass
        done.append("backward")

    threads = [threading.Thread(target=forward), threading.Thread(target=backward)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(done) == ["backward", "forward"]


def test_hold_releases_on_error() -> None:
    locks = KeyedLock()

    try:
        with locks.hold("a"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    acquired = threading.Event()

    def other() -> None:
        with locks.hold("a"):
            acquired.set()

    thread = threading.Thread(target=other)
    thread.start()
    thread.join(timeout=5)

    assert acquired.is_set()


def test_released_keys_leave_the_map() -> None:
    locks = KeyedLock()

    with locks.hold("a", HIERARCHY_KEY):
        assert len(locks) == 2
        with locks.hold("a"):
            assert len(locks) == 2
        assert len(locks) == 2

    assert len(locks) == 0


def test_map_does_not_grow_with_distinct_keys() -> None:
    locks = KeyedLock()

    for index in range(500):
        with locks.hold(f"user:{index}"):
            pass

    assert len(locks) == 0


def test_waiting_caller_keeps_the_key_alive() -> None:
    locks = KeyedLock()
    entered = threading.Event()
    release = threading.Event()

    def holder() -> None:
        with locks.hold("a"):
            entered.set()
            release.wait(timeout=5)

    def waiter() -> None:
        with locks.hold("a"):
            pass

    first = threading.Thread(target=holder)
    first.start()
    entered.wait(timeout=5)
    second = threading.Thread(target=waiter)
    second.start()
    second.join(timeout=0.1)

    assert len(locks) == 1

    release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert len(locks) == 0
