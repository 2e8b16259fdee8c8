"""Durable-backed cache of WASM UDF modules keyed by numeric id"""

import hashlib
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from prometheus_client import Counter

from .config import WasmUdfSettings, get_settings
from .exceptions import ModuleAlreadyExists, ModuleNotFound, StorageIOError

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"[0-9]+")


store_loads = Counter(
    'platformq_wasm_udf_store_loads_total',
    'WASM module lookups by outcome',
    ['result'],
)


@dataclass(frozen=True)
class CompiledModule:
    """Raw module bytes loaded from the store, plus the entry point to call"""
    module_id: int
    name: str
    contents: bytes
    entry_point: str
    digest: str

    @classmethod
    def from_bytes(cls, module_id: int, contents: bytes, entry_point: str = "udf_main") -> "CompiledModule":
        return cls(
            module_id=module_id,
            name=str(module_id),
            contents=bytes(contents),
            entry_point=entry_point,
            digest=hashlib.sha256(contents).hexdigest(),
        )

    def __repr__(self) -> str:
        return f"CompiledModule(id={self.module_id}, size={len(self.contents)}, digest={self.digest[:12]})"


def _check_id(module_id: int) -> int:
    if isinstance(module_id, bool) or not isinstance(module_id, int) or module_id < 0:
        raise ValueError(f"WASM module id must be a non-negative integer, got {module_id!r}")
    return module_id


class ModuleStore:
    """
    Loads WASM modules from a directory of ``<id>.wasm`` files and keeps them
    in memory for the life of the process.

    Entries are never evicted or refreshed: once an id is cached, later changes
    to its file are not observed. Lookups may run concurrently; only the cache
    insert is serialized, and the first entry inserted for an id wins.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, settings: Optional[WasmUdfSettings] = None):
        self.settings = settings or get_settings()
        self.path = Path(path if path is not None else self.settings.store_path)
        self._modules: Dict[int, CompiledModule] = {}
        self._lock = threading.Lock()

    @classmethod
    def init(cls, path: Optional[Union[str, Path]] = None, settings: Optional[WasmUdfSettings] = None) -> "ModuleStore":
        """Create the backing directory if needed and return an empty store"""
        store = cls(path, settings)
        try:
            store.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(str(store.path), str(e)) from e
        logger.info(f"Initialized WASM module store at {store.path}")
        return store

    def module_path(self, module_id: int) -> Path:
        return self.path / f"{_check_id(module_id)}{self.settings.module_suffix}"

    def get(self, module_id: int) -> CompiledModule:
        """Return the module for ``module_id``, reading it from disk on first use"""
        module = self._modules.get(_check_id(module_id))
        if module is not None:
            store_loads.labels(result="hit").inc()
            return module

        path = self.module_path(module_id)
        try:
            contents = self._read_module_bytes(path)
        except FileNotFoundError:
            store_loads.labels(result="not_found").inc()
            raise ModuleNotFound(module_id, str(path)) from None
        except OSError as e:
            store_loads.labels(result="error").inc()
            logger.error(f"Failed to read WASM module {module_id} from {path}: {e}")
            raise StorageIOError(str(path), str(e)) from e

        store_loads.labels(result="loaded").inc()
        logger.info(f"Loaded WASM module {module_id} ({len(contents)} bytes) from {path}")
        return self._cache(CompiledModule.from_bytes(module_id, contents, self.settings.entry_point))

    def insert(self, module_id: int, payload: bytes) -> CompiledModule:
        """Persist ``payload`` under a new id and cache it"""
        path = self.module_path(module_id)
        if module_id in self._modules or path.exists():
            raise ModuleAlreadyExists(module_id)

        try:
            self.path.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path, prefix=f".{module_id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as buffer:
                    buffer.write(payload)
                # Hard-link then unlink, so an id that appeared meanwhile is not overwritten
                os.link(tmp_path, path)
            finally:
                os.unlink(tmp_path)
        except FileExistsError:
            raise ModuleAlreadyExists(module_id) from None
        except OSError as e:
            raise StorageIOError(str(path), str(e)) from e

        logger.info(f"Stored WASM module {module_id} ({len(payload)} bytes) at {path}")
        return self._cache(CompiledModule.from_bytes(module_id, payload, self.settings.entry_point))

    def list(self) -> List[int]:
        """Ids of all modules present in the backing directory"""
        suffix = self.settings.module_suffix
        try:
            names = os.listdir(self.path)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageIOError(str(self.path), str(e)) from e

        ids = []
        for name in names:
            if not name.endswith(suffix):
                continue
            stem = name[:-len(suffix)] if suffix else name
            if _ID_PATTERN.fullmatch(stem):
                ids.append(int(stem))
        return sorted(ids)

    def cached_ids(self) -> List[int]:
        return sorted(self._modules)

    def __contains__(self, module_id: int) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def _cache(self, module: CompiledModule) -> CompiledModule:
        with self._lock:
            return self._modules.setdefault(module.module_id, module)

    def _read_module_bytes(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read()
