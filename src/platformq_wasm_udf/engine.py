"""
WASM execution engine for scalar user-defined functions.

Every call runs in a fresh wasmtime Store with its own linker, WASI session and
instance, so nothing a module does survives into the next call. Only the
compiled module is reused: it is cached by the SHA-256 digest of its bytes,
together with the one-off classification of whether it imports WASI.

Export lookup, arity checking and argument parsing all use the module's static
type information, so a call with bad arguments fails before the module is
instantiated.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence

import wasmtime
from cachetools import LRUCache
from prometheus_client import Counter, Histogram

from .config import WasmUdfSettings, get_settings
from .exceptions import (
    ArgumentConversionError,
    ArityMismatch,
    CompileError,
    ExecutionLimitExceeded,
    ExecutionTrap,
    ExportNotAFunction,
    ExportNotFound,
    InstantiationError,
    ProcessExitSignal,
)
from .store import CompiledModule
from .values import ValueKind, WasmValue, check_value, parse_arguments, results_from_call, stringify

logger = logging.getLogger(__name__)


WASI_NAMESPACES = frozenset({"wasi_snapshot_preview1", "wasi_unstable"})

compile_cache_events = Counter(
    'platformq_wasm_udf_compile_cache_total',
    'Compiled module cache lookups',
    ['result'],
)
executions = Counter(
    'platformq_wasm_udf_executions_total',
    'WASM function calls by outcome',
    ['outcome'],
)
execution_duration = Histogram(
    'platformq_wasm_udf_execution_duration_seconds',
    'Duration of WASM function calls including instantiation',
)


@dataclass
class CapabilitySession:
    """WASI state for a single call: program name and argument vector"""
    program_name: str
    argv: List[str] = field(default_factory=list)
    inherit_stdio: bool = False

    def attach(self, store: wasmtime.Store, linker: wasmtime.Linker):
        wasi = wasmtime.WasiConfig()
        wasi.argv = [self.program_name, *self.argv]
        if self.inherit_stdio:
            wasi.inherit_stdout()
            wasi.inherit_stderr()
        store.set_wasi(wasi)
        linker.define_wasi()


@dataclass(frozen=True)
class ModuleArtifact:
    """A compiled module and what was learned about it at compile time"""
    module: wasmtime.Module
    requires_bootstrap: bool
    functions: Dict[str, wasmtime.FuncType]
    other_exports: FrozenSet[str]


def requires_bootstrap(module: wasmtime.Module) -> bool:
    """True if any import is drawn from a WASI namespace"""
    return any(imp.module in WASI_NAMESPACES for imp in module.imports)


class ExecutionEngine:
    def __init__(self, settings: Optional[WasmUdfSettings] = None):
        self.settings = settings or get_settings()
        config = wasmtime.Config()
        if self.settings.fuel_limit is not None:
            config.consume_fuel = True
        self.wasm_engine = wasmtime.Engine(config)

        self._compiled: Optional[LRUCache] = None
        if self.settings.compile_cache_size > 0:
            self._compiled = LRUCache(maxsize=self.settings.compile_cache_size)
        self._lock = threading.Lock()

    # --- Public API ---

    def execute(self, module: CompiledModule, endpoint: str, args: Sequence[str]) -> List[WasmValue]:
        """
        Call ``endpoint`` with textual arguments and return its typed results.

        The arguments double as the WASI argument vector when the module
        imports WASI.
        """
        args = [str(a) for a in args]
        artifact = self.compile(module)
        func_type = self._resolve_export(artifact, endpoint)
        param_kinds = self._check_params(func_type, endpoint, args)
        result_kinds = self._result_kinds(func_type, endpoint)
        values = parse_arguments(args, param_kinds)
        return self._invoke(module, artifact, endpoint, args, values, result_kinds)

    def execute_values(self, module: CompiledModule, endpoint: str, values: Sequence[WasmValue]) -> List[WasmValue]:
        """
        Call ``endpoint`` with already-typed arguments, skipping the text round-trip.

        Each value's kind must match the declared parameter kind exactly and
        its payload must fit that kind.
        """
        values = list(values)
        argv = [stringify(v.value) for v in values]
        artifact = self.compile(module)
        func_type = self._resolve_export(artifact, endpoint)
        param_kinds = self._check_params(func_type, endpoint, argv)
        for index, (value, kind) in enumerate(zip(values, param_kinds)):
            if value.kind is not kind:
                raise ArgumentConversionError(index, kind.value, argv[index])
        values = [check_value(v, i) for i, v in enumerate(values)]
        result_kinds = self._result_kinds(func_type, endpoint)
        return self._invoke(module, artifact, endpoint, argv, values, result_kinds)

    def run(self, module: CompiledModule, args: Sequence[str] = ()) -> None:
        """
        Run the module's WASI entry point with ``args`` as its argument vector.

        Results are discarded. An exit request with code 0 is a normal return.
        """
        endpoint = self.settings.bootstrap_entry_point
        args = [str(a) for a in args]
        artifact = self.compile(module)
        func_type = self._resolve_export(artifact, endpoint)
        self._check_params(func_type, endpoint, [])
        try:
            self._invoke(module, artifact, endpoint, args, [], [])
        except ProcessExitSignal as e:
            if e.exit_code != 0:
                raise
            logger.debug(f"WASM module '{module.name}' exited cleanly")

    def compile(self, module: CompiledModule) -> ModuleArtifact:
        if self._compiled is not None:
            with self._lock:
                artifact = self._compiled.get(module.digest)
            if artifact is not None:
                compile_cache_events.labels(result="hit").inc()
                return artifact
            compile_cache_events.labels(result="miss").inc()

        try:
            compiled = wasmtime.Module(self.wasm_engine, module.contents)
        except wasmtime.WasmtimeError as e:
            logger.warning(f"WASM module '{module.name}' failed to compile: {e}")
            raise CompileError(module.name, str(e)) from e

        functions = {}
        other_exports = set()
        for export in compiled.exports:
            if isinstance(export.type, wasmtime.FuncType):
                functions[export.name] = export.type
            else:
                other_exports.add(export.name)
        artifact = ModuleArtifact(
            module=compiled,
            requires_bootstrap=requires_bootstrap(compiled),
            functions=functions,
            other_exports=frozenset(other_exports),
        )
        logger.info(
            f"Compiled WASM module '{module.name}' ({len(functions)} exported functions, "
            f"wasi={artifact.requires_bootstrap})"
        )

        if self._compiled is not None:
            with self._lock:
                self._compiled[module.digest] = artifact
        return artifact

    # --- Call preparation ---

    def _resolve_export(self, artifact: ModuleArtifact, endpoint: str) -> wasmtime.FuncType:
        func_type = artifact.functions.get(endpoint)
        if func_type is not None:
            return func_type
        if endpoint in artifact.other_exports:
            raise ExportNotAFunction(endpoint)
        raise ExportNotFound(endpoint, has_functions=bool(artifact.functions))

    def _check_params(self, func_type: wasmtime.FuncType, endpoint: str, args: Sequence[str]) -> List[ValueKind]:
        params = func_type.params
        if len(params) != len(args):
            raise ArityMismatch(len(params), len(args), args)
        return [
            ValueKind.from_valtype(p, f"parameter {i} of `{endpoint}`")
            for i, p in enumerate(params)
        ]

    def _result_kinds(self, func_type: wasmtime.FuncType, endpoint: str) -> List[ValueKind]:
        return [
            ValueKind.from_valtype(r, f"result {i} of `{endpoint}`")
            for i, r in enumerate(func_type.results)
        ]

    # --- Invocation ---

    def _invoke(self, module: CompiledModule, artifact: ModuleArtifact, endpoint: str,
                argv: List[str], values: List[WasmValue], result_kinds: List[ValueKind]) -> List[WasmValue]:
        store = wasmtime.Store(self.wasm_engine)
        if self.settings.fuel_limit is not None:
            store.set_fuel(self.settings.fuel_limit)
        linker = wasmtime.Linker(self.wasm_engine)
        if artifact.requires_bootstrap:
            session = CapabilitySession(module.name, argv, self.settings.inherit_stdio)
            session.attach(store, linker)

        with execution_duration.time():
            try:
                instance = linker.instantiate(store, artifact.module)
            except wasmtime.ExitTrap as e:
                executions.labels(outcome="exit").inc()
                self._on_exit_request(module, e.code)
            except (wasmtime.WasmtimeError, wasmtime.Trap) as e:
                executions.labels(outcome="link_error").inc()
                raise InstantiationError(module.name, str(e)) from e

            func = instance.exports(store)[endpoint]
            try:
                raw = func(store, *[v.to_wasmtime() for v in values])
            except wasmtime.ExitTrap as e:
                executions.labels(outcome="exit").inc()
                self._on_exit_request(module, e.code)
            except (wasmtime.Trap, wasmtime.WasmtimeError) as e:
                executions.labels(outcome="trap").inc()
                if self._out_of_fuel(store):
                    raise ExecutionLimitExceeded(endpoint, self.settings.fuel_limit) from e
                logger.error(f"WASM function `{endpoint}` in module '{module.name}' trapped: {e}")
                raise ExecutionTrap(endpoint, str(e)) from e

        executions.labels(outcome="ok").inc()
        return results_from_call(raw, result_kinds)

    def _out_of_fuel(self, store: wasmtime.Store) -> bool:
        return self.settings.fuel_limit is not None and store.get_fuel() == 0

    def _on_exit_request(self, module: CompiledModule, exit_code: int):
        if self.settings.mirror_process_exit:
            logger.critical(
                f"WASM module '{module.name}' requested process exit with code {exit_code}; "
                f"terminating host process"
            )
            os._exit(exit_code)
        raise ProcessExitSignal(module.name, exit_code)
