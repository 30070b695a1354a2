import os
import os.path

from configparser import ConfigParser

import pytest

from docvfs.config import CacheConfig, CertsConfig, Config, ConfigStore
from docvfs.errors import ConfigError


def test_cache_config_defaults():
    parser = ConfigParser()
    parser.read_string("[cache]")

    cfg = CacheConfig.load(parser["cache"])

    assert cfg.path == os.path.expanduser("~/.docvfs/cache")


def test_cache_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [cache]
        path = ~/test
        """
    )

    cfg = CacheConfig.load(parser["cache"])

    assert cfg.path == os.path.expanduser("~/test")


def test_certs_config_load():
    parser = ConfigParser()
    parser.read_string(
        f"""
        [certs]
        add_dirs = /a{os.pathsep}~/b{os.pathsep}
        remove_dir = ~/removed
        """
    )

    cfg = CertsConfig.load(parser["certs"])

    assert cfg.add_dirs == ["/a", os.path.expanduser("~/b")]
    assert cfg.remove_dir == os.path.expanduser("~/removed")


def test_certs_config_defaults():
    cfg = CertsConfig()

    assert "/etc/ssl/certs" in cfg.add_dirs
    assert os.path.expanduser("~/.docvfs/certs/added") in cfg.add_dirs


def test_config_defaults(tmp_path):
    cfg = Config.load(str(tmp_path / "nonexistent"))

    assert cfg.cache is not None
    assert cfg.remotes.path == os.path.expanduser("~/.docvfs/remotes.conf")


def test_config_load(tmp_path):
    (tmp_path / "config").write_text(
        """
        [remotes]
        path = ~/remotes.conf

        [cache]
        path = ~/test
        """
    )

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.remotes.path == os.path.expanduser("~/remotes.conf")
    assert cfg.cache.path == os.path.expanduser("~/test")


def test_config_load_failure_nonfatal(tmp_path, caplog):
    (tmp_path / "config").write_text("blabla")

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.cache is not None
    assert "failed to read config file" in caplog.text


def test_store_roundtrip(tmp_path):
    path = str(tmp_path / "sub" / "remotes.conf")

    store = ConfigStore(path)
    store.set_value("gdrive", "type", "drive")
    store.set_value("gdrive", "docvfs:vfs:Chunk_Size", "100%")
    store.save()

    loaded = ConfigStore(path)
    loaded.load()

    assert loaded.sections() == ["gdrive"]
    assert loaded.get_section("gdrive") == {
        "type": "drive",
        "docvfs:vfs:Chunk_Size": "100%",
    }


def test_store_save_is_atomic(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))
    store.set_value("a", "type", "memory")
    store.save()

    assert sorted(os.listdir(tmp_path)) == ["remotes.conf", "remotes.conf.lock"]


def test_store_load_missing(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))

    with pytest.raises(FileNotFoundError):
        store.load()


def test_store_load_invalid(tmp_path):
    (tmp_path / "remotes.conf").write_text("no section header")

    store = ConfigStore(str(tmp_path / "remotes.conf"))

    with pytest.raises(ConfigError):
        store.load()


def test_store_load_replaces_memory(tmp_path):
    (tmp_path / "remotes.conf").write_text("[b]\ntype = memory\n")

    store = ConfigStore(str(tmp_path / "remotes.conf"))
    store.set_value("a", "type", "memory")
    store.load()

    assert store.sections() == ["b"]


def test_store_keys(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))

    assert store.get_value("a", "type") is None
    assert not store.delete_key("a", "type")

    store.set_value("a", "type", "memory")
    assert store.get_value("a", "type") == "memory"

    assert store.delete_key("a", "type")
    assert not store.delete_key("a", "type")
    assert store.has_section("a")


def test_store_copy_and_delete_section(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))
    store.set_value("a", "type", "memory")
    store.set_value("a", "streaming", "false")

    store.copy_section("a", "b")
    assert store.get_section("b") == store.get_section("a")

    assert store.delete_section("a")
    assert not store.delete_section("a")
    assert store.get_section("a") == {}
    assert store.sections() == ["b"]


def test_store_vfs_overrides(tmp_path):
    store = ConfigStore(str(tmp_path / "remotes.conf"))
    store.set_value("a", "type", "memory")
    store.set_value("a", "docvfs:vfs:cache_mode", "off")
    store.set_value("a", "docvfs:other", "x")

    assert store.vfs_overrides("a") == {"cache_mode": "off"}
    assert store.vfs_overrides("missing") == {}
