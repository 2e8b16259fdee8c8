import os

import pytest
import wasmtime

from platformq_wasm_udf import (
    ArgumentConversionError,
    ArityMismatch,
    CompiledModule,
    CompileError,
    ExecutionEngine,
    ExecutionLimitExceeded,
    ExecutionTrap,
    ExportNotAFunction,
    ExportNotFound,
    InstantiationError,
    ProcessExitSignal,
    UnsupportedType,
    WasmUdfSettings,
    WasmValue,
)

from tests.fixtures.modules import DOUBLE_I64, compile_wat


@pytest.fixture
def no_instantiation(monkeypatch):
    """Fail the test if anything tries to instantiate a module"""
    def instantiate(self, store, module):
        raise AssertionError("module was instantiated")

    monkeypatch.setattr(wasmtime.Linker, "instantiate", instantiate)


# --- Successful calls ---

def test_execute_doubles_input(store, engine):
    assert engine.execute(store.get(1), "udf_main", ["21"]) == [WasmValue.i64(42)]


def test_execute_returns_float_results(store, engine):
    assert engine.execute(store.get(2), "udf_main", ["5"]) == [WasmValue.f64(2.5)]


def test_execute_coerces_each_declared_kind(store, engine):
    result = engine.execute(store.get(10), "mix", ["1", "2", "0.5", "0.25"])

    assert result == [WasmValue.f64(3.75)]


def test_execute_returns_all_results(store, engine):
    result = engine.execute(store.get(10), "pair", ["-3"])

    assert result == [WasmValue.i32(-3), WasmValue.i64(9)]


def test_execute_without_results_returns_empty_list(store, engine):
    assert engine.execute(store.get(5), "udf_main", ["1"]) == []


def test_execute_values_skips_text_parsing(store, engine):
    values = [WasmValue.i32(1), WasmValue.i64(2), WasmValue.f32(0.5), WasmValue.f64(0.25)]

    assert engine.execute_values(store.get(10), "mix", values) == [WasmValue.f64(3.75)]


def test_execute_values_rejects_mismatched_kind(store, engine):
    with pytest.raises(ArgumentConversionError) as exc_info:
        engine.execute_values(store.get(1), "udf_main", [WasmValue.f64(21.0)])

    assert exc_info.value.index == 0
    assert exc_info.value.target_kind == "i64"


@pytest.mark.parametrize("value", [2 ** 70, -(2 ** 63) - 1, 1.0, True])
def test_execute_values_rejects_value_outside_kind(store, engine, no_instantiation, value):
    with pytest.raises(ArgumentConversionError) as exc_info:
        engine.execute_values(store.get(1), "udf_main", [WasmValue.i64(value)])

    assert exc_info.value.index == 0


def test_execute_values_rejects_non_numeric_payload(store, engine, no_instantiation):
    values = [WasmValue.i32(1), WasmValue.i64(2), WasmValue.f32(0.5), WasmValue.f64("x")]

    with pytest.raises(ArgumentConversionError) as exc_info:
        engine.execute_values(store.get(10), "mix", values)

    assert exc_info.value.index == 3
    assert exc_info.value.target_kind == "f64"


def test_execute_values_rejects_f32_overflow(store, engine, no_instantiation):
    values = [WasmValue.i32(1), WasmValue.i64(2), WasmValue.f32(1e300), WasmValue.f64(0.25)]

    with pytest.raises(ArgumentConversionError) as exc_info:
        engine.execute_values(store.get(10), "mix", values)

    assert exc_info.value.index == 2


# --- Failures before instantiation ---

def test_arity_mismatch(store, engine, no_instantiation):
    with pytest.raises(ArityMismatch) as exc_info:
        engine.execute(store.get(1), "udf_main", ["21", "1"])

    assert exc_info.value.expected == 1
    assert exc_info.value.received == 2
    assert exc_info.value.arguments == ["21", "1"]
    assert '"21 1"' in str(exc_info.value)


def test_arity_checked_before_linking(store, engine):
    # Module 22 has an unresolvable import, so linking would fail
    with pytest.raises(ArityMismatch):
        engine.execute(store.get(22), "udf_main", [])


@pytest.mark.parametrize("args, bad_index, kind", [
    (["x", "2", "0.5", "0.25"], 0, "i32"),
    (["1", "2.0", "0.5", "0.25"], 1, "i64"),
    (["1", "2", "half", "0.25"], 2, "f32"),
    (["1", "2", "0.5", ""], 3, "f64"),
])
def test_argument_conversion_error(store, engine, no_instantiation, args, bad_index, kind):
    with pytest.raises(ArgumentConversionError) as exc_info:
        engine.execute(store.get(10), "mix", args)

    assert exc_info.value.index == bad_index
    assert exc_info.value.target_kind == kind


def test_unsupported_parameter_type(store, engine, no_instantiation):
    with pytest.raises(UnsupportedType) as exc_info:
        engine.execute(store.get(10), "takes_ref", ["0"])

    assert exc_info.value.type_name == "externref"


def test_module_without_exported_functions(store, engine):
    with pytest.raises(ExportNotFound) as exc_info:
        engine.execute(store.get(20), "udf_main", ["1"])

    assert not exc_info.value.has_functions
    assert "no exported functions" in str(exc_info.value)


def test_module_exporting_only_memory_has_no_functions(store, engine):
    with pytest.raises(ExportNotFound) as exc_info:
        engine.execute(store.get(21), "udf_main", ["1"])

    assert "no exported functions" in str(exc_info.value)


def test_missing_export_names_the_endpoint(store, engine):
    with pytest.raises(ExportNotFound) as exc_info:
        engine.execute(store.get(1), "nope", ["1"])

    message = str(exc_info.value)
    assert "`nope`" in message
    assert "no exported functions" not in message


def test_export_that_is_not_a_function(store, engine):
    with pytest.raises(ExportNotAFunction):
        engine.execute(store.get(10), "memory", [])


def test_malformed_bytecode():
    engine = ExecutionEngine(WasmUdfSettings())
    module = CompiledModule.from_bytes(99, b"\x00asm not really")

    with pytest.raises(CompileError) as exc_info:
        engine.execute(module, "udf_main", ["1"])

    assert isinstance(exc_info.value.__cause__, wasmtime.WasmtimeError)


# --- Failures during and after instantiation ---

def test_unresolved_import(store, engine):
    with pytest.raises(InstantiationError):
        engine.execute(store.get(22), "udf_main", ["1"])


def test_trap_in_start_function_fails_instantiation(store, engine):
    with pytest.raises(InstantiationError) as exc_info:
        engine.execute(store.get(23), "udf_main", ["1"])

    assert exc_info.value.module_name == "23"


def test_exit_request_in_start_function_is_surfaced(store, engine):
    with pytest.raises(ProcessExitSignal) as exc_info:
        engine.execute(store.get(32), "udf_main", ["1"])

    assert exc_info.value.exit_code == 3


def test_trap_is_wrapped(store, engine):
    with pytest.raises(ExecutionTrap) as exc_info:
        engine.execute(store.get(10), "trap", ["1"])

    assert exc_info.value.endpoint == "trap"
    assert not isinstance(exc_info.value, ExecutionLimitExceeded)


def test_fuel_limit_stops_infinite_loop(store_dir):
    settings = WasmUdfSettings(store_path=str(store_dir), fuel_limit=10_000)
    engine = ExecutionEngine(settings)
    module = CompiledModule.from_bytes(10, (store_dir / "10.wasm").read_bytes())

    with pytest.raises(ExecutionLimitExceeded) as exc_info:
        engine.execute(module, "spin", [])

    assert exc_info.value.fuel_limit == 10_000
    assert isinstance(exc_info.value, ExecutionTrap)


def test_fuel_is_reset_for_every_call(store_dir):
    settings = WasmUdfSettings(store_path=str(store_dir), fuel_limit=10_000)
    engine = ExecutionEngine(settings)
    module = CompiledModule.from_bytes(1, (store_dir / "1.wasm").read_bytes())

    for _ in range(5):
        assert engine.execute(module, "udf_main", ["4"]) == [WasmValue.i64(8)]


# --- WASI bootstrap ---

def test_wasi_argument_vector_includes_program_name(store, engine):
    # argv is [module name, "5"]
    assert engine.execute(store.get(30), "argc", ["5"]) == [WasmValue.i32(2)]


def test_exit_request_is_surfaced(store, engine):
    with pytest.raises(ProcessExitSignal) as exc_info:
        engine.execute(store.get(30), "udf_main", ["7"])

    assert exc_info.value.exit_code == 7
    assert exc_info.value.module_name == "30"


def test_run_exits_with_first_argument(store, engine):
    with pytest.raises(ProcessExitSignal) as exc_info:
        engine.run(store.get(30), ["7"])

    assert exc_info.value.exit_code == 7


def test_run_treats_exit_zero_as_completion(store, engine):
    assert engine.run(store.get(30), ["0"]) is None


def test_run_returning_normally(store, engine):
    assert engine.run(store.get(31), ["ignored"]) is None


def test_run_requires_bootstrap_entry_point(store, engine):
    with pytest.raises(ExportNotFound):
        engine.run(store.get(1), [])


def test_mirrored_exit_terminates_host(store_dir, monkeypatch):
    exits = []

    def fake_exit(code):
        exits.append(code)
        raise SystemExit(code)

    monkeypatch.setattr(os, "_exit", fake_exit)
    settings = WasmUdfSettings(store_path=str(store_dir), mirror_process_exit=True)
    engine = ExecutionEngine(settings)
    module = CompiledModule.from_bytes(30, (store_dir / "30.wasm").read_bytes())

    with pytest.raises(SystemExit):
        engine.run(module, ["7"])

    assert exits == [7]


# --- Compiled module cache ---

def test_compiled_module_is_reused(store, engine):
    module = store.get(1)

    first = engine.compile(module)
    engine.execute(module, "udf_main", ["1"])

    assert engine.compile(module) is first


def test_compile_cache_is_content_addressed(engine):
    payload = compile_wat(DOUBLE_I64)
    a = CompiledModule.from_bytes(1, payload)
    b = CompiledModule.from_bytes(2, payload)

    assert engine.compile(a) is engine.compile(b)


def test_bootstrap_classification_is_cached(store, engine):
    assert engine.compile(store.get(30)).requires_bootstrap
    assert not engine.compile(store.get(1)).requires_bootstrap


def test_compile_cache_can_be_disabled(store_dir):
    engine = ExecutionEngine(WasmUdfSettings(store_path=str(store_dir), compile_cache_size=0))
    module = CompiledModule.from_bytes(1, (store_dir / "1.wasm").read_bytes())

    assert engine.compile(module) is not engine.compile(module)
    assert engine.execute(module, "udf_main", ["21"]) == [WasmValue.i64(42)]
