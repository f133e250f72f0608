"""Minimal in-memory key-value store used as a disposable test dependency."""

from .client import KVClient, KVStoreError
from .script import ScriptError, load_scripts, parse_script

__all__ = ["KVClient", "KVStoreError", "ScriptError", "load_scripts", "parse_script"]
