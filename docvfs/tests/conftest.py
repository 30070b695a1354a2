"""Module with fixtures shared by the tests of the bridge and the VFS layer."""

import pytest

from docvfs.backend import MemoryBackend, new_backend
from docvfs.bridge import Bridge
from docvfs.certs import TrustStore
from docvfs.config import Config, ConfigStore
from docvfs.vfs import CacheMode, VfsOptions


@pytest.fixture
def options():
    """Options with synchronous uploads and no background cleanup in the way."""
    return VfsOptions(
        dir_cache_time=60.0,
        cache_mode=CacheMode.WRITES,
        cache_max_age=3600.0,
        cache_poll_interval=3600.0,
        chunk_size=4,
        chunk_size_limit=16,
    )


@pytest.fixture
def store(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))

    store.set_value("mem", "type", "memory")
    store.set_value("nostream", "type", "memory")
    store.set_value("nostream", "streaming", "false")
    store.set_value("off", "type", "memory")
    store.set_value("off", "docvfs:vfs:cache_mode", "off")
    store.set_value("disk", "type", "local")
    store.set_value("disk", "root", str(tmp_path / "disk"))

    (tmp_path / "disk").mkdir()

    return store


@pytest.fixture
def backends():
    """Memory backends by remote, shared between VFS instances of a bridge."""
    return {}


@pytest.fixture
def bridge(tmp_path, store, backends):
    """Initialized bridge with the remotes of the store fixture."""
    store.save()

    config = Config()
    config.remotes.path = store.path
    config.cache.path = str(tmp_path / "cache")

    def backend_factory(remote, section):
        if section.get("type") != "memory":
            return new_backend(remote, section)

        if remote not in backends:
            backends[remote] = MemoryBackend.from_config(remote, section)

        return backends[remote]

    bridge = Bridge(
        config,
        backend_factory=backend_factory,
        trust_store=TrustStore([str(tmp_path / "certs")], None),
    )
    bridge.init()

    yield bridge

    bridge.evict_all(delete_cache_dir=False, timeout=5)
