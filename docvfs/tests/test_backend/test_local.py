import io

import pytest

from docvfs.backend import LocalBackend, new_backend
from docvfs.errors import BackendError, ErrorKind


@pytest.fixture
def backend(tmp_path):
    return new_backend("disk:", {"type": "local", "root": str(tmp_path)})


def test_stat(backend, tmp_path):
    (tmp_path / "dir").mkdir()
    (tmp_path / "dir" / "file").write_bytes(b"abc")

    assert isinstance(backend, LocalBackend)

    entry = backend.stat("dir/file")
    assert entry.name == "file"
    assert entry.size == 3
    assert not entry.is_dir

    entry = backend.stat("dir")
    assert entry.is_dir
    assert entry.size == 0

    assert backend.stat("").is_dir

    with pytest.raises(BackendError) as e:
        backend.stat("missing")
    assert e.value.kind == ErrorKind.NOT_FOUND


def test_list(backend, tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").write_bytes(b"")

    assert sorted(e.name for e in backend.list("")) == ["a", "b"]

    with pytest.raises(BackendError) as e:
        backend.list("b")
    assert e.value.kind == ErrorKind.IS_FILE

    with pytest.raises(BackendError) as e:
        backend.list("c")
    assert e.value.kind == ErrorKind.DIR_NOT_FOUND


def test_new_object(backend, tmp_path):
    (tmp_path / "a").mkdir()

    with pytest.raises(BackendError) as e:
        backend.new_object("a")
    assert e.value.kind == ErrorKind.IS_DIR

    with pytest.raises(BackendError) as e:
        backend.new_object("b")
    assert e.value.kind == ErrorKind.OBJECT_NOT_FOUND


def test_put_and_read(backend, tmp_path):
    backend.put("x/y.txt", io.BytesIO(b"hello"))

    assert (tmp_path / "x" / "y.txt").read_bytes() == b"hello"
    assert backend.read("x/y.txt", 1, 3) == b"ell"
    assert backend.read("x/y.txt", 10, 3) == b""

    # No temporary files are left behind
    assert [p.name for p in (tmp_path / "x").iterdir()] == ["y.txt"]


def test_copy_move_remove(backend, tmp_path):
    (tmp_path / "a").write_bytes(b"data")

    backend.copy("a", "b")
    backend.move("a", "sub/c")

    assert (tmp_path / "b").read_bytes() == b"data"
    assert (tmp_path / "sub" / "c").read_bytes() == b"data"
    assert not (tmp_path / "a").exists()

    backend.remove("b")
    assert not (tmp_path / "b").exists()

    with pytest.raises(BackendError):
        backend.remove("b")


def test_directories(backend, tmp_path):
    backend.mkdir("a/b")
    assert (tmp_path / "a" / "b").is_dir()

    backend.mkdir("c")
    with pytest.raises(BackendError) as e:
        backend.dir_move("a", "c")
    assert e.value.kind == ErrorKind.ALREADY_EXISTS

    backend.dir_move("a", "d")
    assert (tmp_path / "d" / "b").is_dir()

    backend.rmdir("d/b")
    assert not (tmp_path / "d" / "b").exists()

    (tmp_path / "d" / "f").write_bytes(b"")
    backend.purge("d")
    assert not (tmp_path / "d").exists()


def test_about(backend):
    about = backend.about()

    assert about["total"] > 0
    assert about["free"] <= about["total"]
