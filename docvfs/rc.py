"""
Module with the dispatcher for remote control calls.

Remote control calls are a generic way for hosts to query and manage docvfs without a
dedicated method for everything: a method name and a JSON object go in, a JSON object
and an HTTP status code come out. Failures are reported in the output as well, like:

    {"error": "couldn't find method", "status": 404, "path": "foo/bar"}
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Tuple, TYPE_CHECKING

from docvfs.constants import PROTOCOL_VERSION, VERSION
from docvfs.errors import ConfigError, ParseError
from docvfs.logger import log
from docvfs.vfs import describe

if TYPE_CHECKING:
    from docvfs.bridge import Bridge

Params = Dict[str, Any]


class RpcError(Exception):
    """Failed call with the HTTP status code to report."""

    def __init__(self, message: str, status: int) -> None:
        """Instantiate an error with a message and status code."""
        super().__init__(message)

        self.status = status


def _param(params: Params, key: str) -> Any:
    if key not in params:
        raise RpcError(f"didn't find key {key!r} in input", 400)

    return params[key]


def _str_param(params: Params, key: str) -> str:
    value = _param(params, key)

    if not isinstance(value, str):
        raise RpcError(f"expected string for key {key!r}", 400)

    return value


class RpcDispatcher:
    """Dispatcher of remote control calls to the state owned by a bridge."""

    def __init__(self, bridge: Bridge) -> None:
        """Instantiate a dispatcher for the given bridge."""
        self._bridge = bridge

        self._methods: Dict[str, Callable[[Params], Params]] = {
            "core/version": self._core_version,
            "core/obscure": self._core_obscure,
            "config/listremotes": self._config_listremotes,
            "config/get": self._config_get,
            "config/dump": self._config_dump,
            "config/delete": self._config_delete,
            "vfs/list": self._vfs_list,
            "vfs/options": self._vfs_options,
        }

    @property
    def methods(self) -> List[str]:
        return sorted(self._methods)

    @staticmethod
    def _error(method: str, message: str, status: int) -> Tuple[str, int]:
        body = {"error": message, "status": status, "path": method}

        return json.dumps(body), status

    def call(self, method: str, json_input: str) -> Tuple[str, int]:
        """Call a method with a JSON object, returning a JSON object and HTTP status."""
        handler = self._methods.get(method)

        if handler is None:
            return self._error(method, "couldn't find method", 404)

        try:
            params = json.loads(json_input) if json_input.strip() else {}
        except json.JSONDecodeError as e:
            return self._error(method, f"failed to parse input: {e}", 400)

        if not isinstance(params, dict):
            return self._error(method, "input must be a JSON object", 400)

        try:
            result = handler(params)
        except RpcError as e:
            return self._error(method, str(e), e.status)
        except (ConfigError, ParseError) as e:
            return self._error(method, str(e), 400)
        except Exception as e:
            log.error(f"rc call {method} failed: {e}")
            return self._error(method, str(e), 500)

        return json.dumps(result), 200

    #
    # Methods
    #

    def _core_version(self, params: Params) -> Params:
        return {"version": VERSION, "protocol": PROTOCOL_VERSION}

    def _core_obscure(self, params: Params) -> Params:
        clear = _str_param(params, "clear")

        return {"obscured": self._bridge.password_codec.obscure(clear)}

    def _config_listremotes(self, params: Params) -> Params:
        return {"remotes": sorted(self._bridge.store.sections())}

    def _section(self, params: Params) -> str:
        name = _str_param(params, "name")

        if not self._bridge.store.has_section(name):
            raise RpcError(f"remote not found: {name}", 404)

        return name

    def _config_get(self, params: Params) -> Params:
        return self._bridge.store.get_section(self._section(params))

    def _config_dump(self, params: Params) -> Params:
        store = self._bridge.store

        return {section: store.get_section(section) for section in store.sections()}

    def _config_delete(self, params: Params) -> Params:
        """Delete a remote, its VFS instance and its on-disk cache."""
        name = self._section(params)

        self._bridge.vfs_cache.evict(name + ":", delete_cache_dir=True)
        self._bridge.store.delete_section(name)
        self._bridge.store.save()

        return {}

    def _vfs_list(self, params: Params) -> Params:
        return {"vfses": self._bridge.vfs_cache.remotes()}

    def _vfs_options(self, params: Params) -> Params:
        """Describe the effective VFS options of a remote ("fs") or of overrides."""
        if "fs" in params:
            remote = _str_param(params, "fs")
            section = remote[:-1] if remote.endswith(":") else remote

            if not self._bridge.store.has_section(section):
                raise RpcError(f"remote not found: {remote}", 404)

            overrides = self._bridge.store.vfs_overrides(section)
        else:
            overrides = params.get("overrides", {})

            if not isinstance(overrides, dict):
                raise RpcError("expected object for key 'overrides'", 400)

            for key, value in overrides.items():
                if not isinstance(value, str):
                    raise RpcError(f"expected string for option '{key}'", 400)

        return dict(describe(overrides))
