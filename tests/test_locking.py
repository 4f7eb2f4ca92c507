# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for the reader/writer lock and concurrent collection access."""

import threading

from docstore import Collection
from docstore.locking import ReadWriteLock


class TestReadWriteLock:
    """Tests for ReadWriteLock."""

    def test_readers_share(self):
        """Test that several readers hold the lock at once."""
        lock = ReadWriteLock()

        lock.acquire_read()
        lock.acquire_read()

        assert lock.readers == 2
        lock.release_read()
        lock.release_read()
        assert lock.readers == 0

    def test_writer_waits_for_readers(self):
        """Test that a writer blocks until the last reader leaves."""
        lock = ReadWriteLock()
        acquired = threading.Event()

        def writer():
            with lock.write_locked():
                acquired.set()

        lock.acquire_read()
        thread = threading.Thread(target=writer)
        thread.start()

        assert not acquired.wait(0.1)
        lock.release_read()
        assert acquired.wait(2)
        thread.join(2)
        assert not lock.writer_active

    def test_released_on_exception(self):
        """Test that the context managers release on error."""
        lock = ReadWriteLock()

        try:
            with lock.write_locked():
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert not lock.writer_active
        with lock.read_locked():
            assert lock.readers == 1


class TestConcurrentCollection:
    """Tests for concurrent use of one collection."""

    def test_parallel_inserts_and_reads(self):
        """Test that concurrent writers and readers see consistent state."""
        collection = Collection(name="concurrent")
        collection.create_index({"worker": 1})
        errors = []

        def insert(worker):
            try:
                for n in range(50):
                    collection.insert_one({"worker": worker, "n": n})
                    collection.count_documents({"worker": worker})
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=insert, args=(worker,)) for worker in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert errors == []
        assert len(collection) == 200
        for worker in range(4):
            assert collection.count_documents({"worker": worker}) == 50
            assert len(collection.index_lookup({"worker": 1}, {"worker": worker})) == 50
