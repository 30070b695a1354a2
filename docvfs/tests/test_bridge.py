import errno
import os
from unittest import mock

import pytest

from docvfs.bridge import Bridge, PasswordCodec
from docvfs.certs import TrustStore
from docvfs.config import Config, ConfigStore
from docvfs.constants import AUTHORIZE_URL, VERSION
from docvfs.vfs import CacheMode


def new_bridge(tmp_path, **kwargs):
    config = Config()
    config.remotes.path = str(tmp_path / "remotes.conf")
    config.cache.path = str(tmp_path / "cache")

    kwargs.setdefault("trust_store", TrustStore([], None))

    return Bridge(config, **kwargs)


def test_init_without_config(tmp_path):
    bridge = new_bridge(tmp_path)
    bridge.init()

    assert bridge.store.sections() == []
    assert not os.path.exists(tmp_path / "remotes.conf")


def test_init_with_invalid_config(tmp_path):
    (tmp_path / "remotes.conf").write_text("no section header")

    with pytest.raises(Exception):
        new_bridge(tmp_path).init()


def test_init_migrates_legacy_options(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))
    store.set_value("a", "type", "memory")
    store.set_value("a", "docvfs:vfs_caching", "false")
    store.save()

    bridge = new_bridge(tmp_path)
    bridge.init()

    assert bridge.store.get_section("a") == {
        "type": "memory",
        "docvfs:vfs:cache_mode": "off",
    }

    # The migration is saved right away
    store.load()
    assert store.get_value("a", "docvfs:vfs_caching") is None
    assert store.get_value("a", "docvfs:vfs:cache_mode") == "off"


def test_init_loads_certificates(tmp_path):
    trust_store = mock.Mock(spec=TrustStore)

    new_bridge(tmp_path, trust_store=trust_store).init()

    assert trust_store.rebuild.called


def test_version(bridge):
    assert bridge.version() == VERSION


def test_config_load_evicts(bridge, store):
    vfs = bridge.vfs_cache.get("mem:")

    store.set_value("mem", "docvfs:vfs:dir_cache_time", "1h")
    store.save()

    bridge.config_load()

    assert bridge.vfs_cache.remotes() == []
    assert bridge.vfs_cache.get("mem:") is not vfs
    assert bridge.vfs_cache.get("mem:").options.dir_cache_time == 3600


def test_config_load_missing(bridge, store):
    os.unlink(store.path)

    with pytest.raises(OSError) as e:
        bridge.config_load()

    assert e.value.errno == errno.ENOENT


def test_config_save(bridge, store):
    bridge.config_copy_section("mem", "copy")
    bridge.config_save()

    store.load()

    assert store.get_section("copy") == {"type": "memory"}


def test_config_delete_key(bridge):
    assert bridge.config_delete_key("off", "docvfs:vfs:cache_mode")
    assert not bridge.config_delete_key("off", "docvfs:vfs:cache_mode")
    assert not bridge.config_delete_key("missing", "type")


def test_config_check_name():
    Bridge.config_check_name("my-remote")

    with pytest.raises(OSError) as e:
        Bridge.config_check_name("bad:name")

    assert e.value.errno == errno.EINVAL


def test_get_vfs_options():
    options = dict(Bridge.get_vfs_options({"cache_mode": "off"}))

    assert options["cache_mode"] == "off"
    assert options["dir_cache_time"] == "5s"


def test_get_vfs_options_invalid():
    for overrides in [{"foo": "bar"}, {"chunk_size": ""}, {"cache_mode": "maybe"}]:
        with pytest.raises(OSError) as e:
            Bridge.get_vfs_options(overrides)

        assert e.value.errno == errno.EINVAL


def test_password_codec():
    codec = PasswordCodec()

    for text in ["", "secret", "p@ss w0rd", "ünïcode"]:
        assert codec.reveal(codec.obscure(text)) == text

    assert codec.obscure("secret") != "secret"


def test_password_reveal_invalid(bridge):
    with pytest.raises(OSError) as e:
        bridge.password_reveal("_w")

    assert e.value.errno == errno.EINVAL


def test_password_passthrough(bridge):
    assert bridge.password_reveal(bridge.password_obscure("secret")) == "secret"


def test_authorize_unsupported(bridge):
    with pytest.raises(OSError) as e:
        bridge.authorize("drive")

    assert e.value.errno == errno.ENOSYS


def test_authorize(tmp_path):
    authorizer = mock.Mock()

    new_bridge(tmp_path, authorizer=authorizer).authorize("drive\0client-id\0secret")

    authorizer.assert_called_once_with(["drive", "client-id", "secret"])


def test_authorize_failure(tmp_path):
    authorizer = mock.Mock(side_effect=Exception("denied"))

    with pytest.raises(OSError) as e:
        new_bridge(tmp_path, authorizer=authorizer).authorize("drive")

    assert e.value.errno == errno.EIO
    assert e.value.strerror == "denied"


def test_authorize_url():
    assert Bridge.authorize_url() == AUTHORIZE_URL


def test_remote_features(bridge):
    features = bridge.remote_features("mem:")

    assert features.streaming
    assert features.move

    assert bridge.can_stream("mem:")
    assert not bridge.can_stream("nostream:")


def test_remote_features_unknown(bridge):
    with pytest.raises(OSError) as e:
        bridge.remote_features("unknown:")

    assert e.value.errno == errno.ENOENT


def test_init_remote(bridge):
    bridge.init_remote("disk:")

    assert bridge.vfs_cache.remotes() == ["disk:"]


def test_evict_remote(bridge):
    vfs = bridge.vfs_cache.get("mem:")

    bridge.evict_remote("mem:", delete_cache_dir=True)

    assert bridge.vfs_cache.remotes() == []
    assert not os.path.exists(vfs.cache_path)


def test_max_cleanup_wait_seconds(bridge):
    assert bridge.max_cleanup_wait_seconds() == 0

    bridge.store.set_value("mem", "docvfs:vfs:cache_max_age", "10s")
    bridge.store.set_value("mem", "docvfs:vfs:cache_poll_interval", "5s")
    bridge.init_remote("mem:")

    assert bridge.max_cleanup_wait_seconds() == 15


def test_shutdown(bridge):
    bridge.init_remote("mem:")
    bridge.init_remote("off:")

    bridge.shutdown()

    assert bridge.vfs_cache.remotes() == []


def test_forced_cache_mode(bridge):
    bridge.init_remote("nostream:")

    assert bridge.vfs_cache.get("nostream:").options.cache_mode == CacheMode.WRITES


def test_reload_certificates(bridge):
    pool = bridge.reload_certificates()

    assert len(pool) == 0
    assert bridge.trust_store.pool is pool


def test_path_helpers():
    assert Bridge.remote_split("mem:/a/b") == ("mem:", "/a/b")
    assert Bridge.path_split("mem:/a/b") == ("mem:/a", "b")
    assert Bridge.path_join("mem:/a", "b") == "mem:/a/b"

    with pytest.raises(OSError) as e:
        Bridge.remote_split("/a/b")

    assert e.value.errno == errno.EINVAL


def test_set_log_verbosity():
    with mock.patch("docvfs.bridge.set_verbosity") as set_verbosity:
        Bridge.set_log_verbosity(2)

    set_verbosity.assert_called_once_with(2)


def test_rpc_call(bridge):
    assert bridge.rpc_call("vfs/list", "{}") == ('{"vfses": []}', 200)
