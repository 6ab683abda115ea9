"""Unit tests for the reader/writer lock."""

import threading
import time

import pytest

from telemetryflow.locks import ReadWriteLock


@pytest.mark.unit
def test_readers_share_the_lock():
    """
    BEHAVIOR: Several readers can hold the lock at the same time.
    """
    lock = ReadWriteLock()
    inside = threading.Barrier(3, timeout=5)

    def read():
        with lock.read_locked():
            inside.wait()

    threads = [threading.Thread(target=read) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert not any(thread.is_alive() for thread in threads)


@pytest.mark.unit
def test_writer_excludes_readers():
    lock = ReadWriteLock()
    events = []

    lock.acquire_write()

    def read():
        with lock.read_locked():
            events.append("read")

    reader = threading.Thread(target=read)
    reader.start()
    time.sleep(0.05)
    events.append("write-done")
    lock.release_write()
    reader.join(timeout=5)

    assert events == ["write-done", "read"]


@pytest.mark.unit
def test_waiting_writer_blocks_new_readers():
    """
    BEHAVIOR: Once a writer is waiting, new readers queue behind it.
    """
    lock = ReadWriteLock()
    events = []
    lock.acquire_read()

    def write():
        with lock.write_locked():
            events.append("write")

    def read():
        with lock.read_locked():
            events.append("read")

    writer = threading.Thread(target=write)
    writer.start()
    time.sleep(0.05)
    reader = threading.Thread(target=read)
    reader.start()
    time.sleep(0.05)

    assert events == []
    lock.release_read()
    writer.join(timeout=5)
    reader.join(timeout=5)

    assert events == ["write", "read"]


@pytest.mark.unit
def test_lock_released_when_body_raises():
    lock = ReadWriteLock()

    with pytest.raises(RuntimeError):
        with lock.write_locked():
            raise RuntimeError("boom")

    with lock.read_locked():
        pass
