"""PlatformQ WASM UDFs

Scalar user-defined functions compiled to WebAssembly, for query engines.
The DuckDB binding lives in ``platformq_wasm_udf.sql`` and needs the ``sql`` extra.
"""

from .adapter import ColumnRef, Constant, EvalContext, ResultKind, ScalarFunctionAdapter
from .config import WasmUdfSettings, get_settings
from .engine import CapabilitySession, ExecutionEngine
from .exceptions import (
    ArgumentConversionError,
    ArityMismatch,
    CompileError,
    ExecutionError,
    ExecutionLimitExceeded,
    ExecutionTrap,
    ExportNotAFunction,
    ExportNotFound,
    InstantiationError,
    ModuleAlreadyExists,
    ModuleNotFound,
    ProcessExitSignal,
    StorageError,
    StorageIOError,
    UnsupportedType,
    WasmUdfError,
)
from .store import CompiledModule, ModuleStore
from .values import ValueKind, WasmValue

__version__ = "0.1.0"

__all__ = [
    "ModuleStore",
    "CompiledModule",
    "ExecutionEngine",
    "CapabilitySession",
    "ScalarFunctionAdapter",
    "EvalContext",
    "ColumnRef",
    "Constant",
    "ResultKind",
    "ValueKind",
    "WasmValue",
    "WasmUdfSettings",
    "get_settings",
    "WasmUdfError",
    "StorageError",
    "StorageIOError",
    "ModuleNotFound",
    "ModuleAlreadyExists",
    "ExecutionError",
    "CompileError",
    "InstantiationError",
    "ExportNotFound",
    "ExportNotAFunction",
    "ArityMismatch",
    "ArgumentConversionError",
    "UnsupportedType",
    "ExecutionTrap",
    "ExecutionLimitExceeded",
    "ProcessExitSignal",
]
