"""Custom exceptions for WASM user-defined function execution"""

from typing import Sequence


class WasmUdfError(Exception):
    """Base exception for WASM UDF errors"""
    pass


# --- Module store ---

class StorageError(WasmUdfError):
    """Base exception for module store errors"""
    pass


class ModuleNotFound(StorageError):
    """Raised when no module bytes exist for an id"""
    def __init__(self, module_id: int, path: str):
        self.module_id = module_id
        self.path = path
        super().__init__(f"WASM module with id '{module_id}' not found at {path}")


class ModuleAlreadyExists(StorageError):
    """Raised when inserting bytes under an id that is already stored"""
    def __init__(self, module_id: int):
        self.module_id = module_id
        super().__init__(f"WASM module with id '{module_id}' already exists")


class StorageIOError(StorageError):
    """Raised when the backing directory cannot be read or written"""
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Storage I/O error on {path}: {message}")


# --- Execution engine ---

class ExecutionError(WasmUdfError):
    """Base exception for module execution errors"""
    pass


class CompileError(ExecutionError):
    """Raised when module bytes are not valid WebAssembly"""
    def __init__(self, module_name: str, message: str):
        self.module_name = module_name
        super().__init__(f"Failed to compile WASM module '{module_name}': {message}")


class InstantiationError(ExecutionError):
    """Raised when a module cannot be linked against its imports"""
    def __init__(self, module_name: str, message: str):
        self.module_name = module_name
        super().__init__(f"Failed to instantiate WASM module '{module_name}': {message}")


class ExportNotFound(ExecutionError):
    """Raised when the requested endpoint is not exported"""
    def __init__(self, endpoint: str, has_functions: bool = True):
        self.endpoint = endpoint
        self.has_functions = has_functions
        if has_functions:
            message = f"No export `{endpoint}` found in the module"
        else:
            message = "The module has no exported functions to call."
        super().__init__(message)


class ExportNotAFunction(ExecutionError):
    """Raised when the requested endpoint is exported but is not callable"""
    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"Export `{endpoint}` found, but is not a function.")


class ArityMismatch(ExecutionError):
    """Raised when the argument count differs from the declared parameter count"""
    def __init__(self, expected: int, received: int, args: Sequence[str]):
        self.expected = expected
        self.received = received
        self.arguments = list(args)
        super().__init__(
            f"Function expected {expected} arguments, but received {received}: "
            f"\"{' '.join(str(a) for a in self.arguments)}\""
        )


class ArgumentConversionError(ExecutionError):
    """Raised when an argument cannot be parsed as its declared kind"""
    def __init__(self, index: int, target_kind: str, value: str):
        self.index = index
        self.target_kind = target_kind
        self.value = value
        super().__init__(f"Can't convert `{value}` (argument {index}) into a {target_kind}")


class UnsupportedType(ExecutionError):
    """Raised when a signature uses a value type outside i32/i64/f32/f64"""
    def __init__(self, type_name: str, position: str):
        self.type_name = type_name
        self.position = position
        super().__init__(f"Unsupported WASM value type {type_name} for {position}")


class ExecutionTrap(ExecutionError):
    """Raised when the module call traps or otherwise fails at runtime"""
    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        super().__init__(f"WASM function `{endpoint}` trapped: {message}")


class ExecutionLimitExceeded(ExecutionTrap):
    """Raised when a call exhausts its fuel budget"""
    def __init__(self, endpoint: str, fuel_limit: int):
        self.fuel_limit = fuel_limit
        super().__init__(endpoint, f"fuel budget of {fuel_limit} exhausted")


class ProcessExitSignal(WasmUdfError):
    """
    A module asked its WASI session to exit the process.

    This is an outcome, not a fault in the call machinery: the caller decides
    whether to mirror the exit in the host.
    """
    def __init__(self, module_name: str, exit_code: int):
        self.module_name = module_name
        self.exit_code = exit_code
        super().__init__(f"WASM module '{module_name}' requested process exit with code {exit_code}")
