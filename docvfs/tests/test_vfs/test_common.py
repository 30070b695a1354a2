import threading

from docvfs.vfs.common import CacheItem, LockIndex
import docvfs.rpc as rpc


def test_lock_index():
    index = LockIndex()

    with index.lock("a"):
        with index.lock("b"):
            with index.lock("c"):
                assert index.lock_count == 3

        assert index.lock_count == 1

    assert index.lock_count == 0


def test_lock_index_non_blocking():
    index = LockIndex()
    acquired_elsewhere = []

    def try_lock():
        with index.lock("a", False) as acquired:
            acquired_elsewhere.append(acquired)

    with index.lock("a") as acquired:
        assert acquired

        t = threading.Thread(target=try_lock)
        t.start()
        t.join()

    assert acquired_elsewhere == [False]
    assert index.lock_count == 0


def test_cache_item_json_encoding(tmp_path):
    encoding = rpc.Encoding(CacheItem)

    items = {
        "a/b": CacheItem(
            path="a/b", storage="/cache/a/b", dirty=True, remote_size=3
        )
    }

    with open(tmp_path / "index.json", "w") as f:
        encoding.dump_json(items, f)

    with open(tmp_path / "index.json") as f:
        assert encoding.load_json(f) == items
