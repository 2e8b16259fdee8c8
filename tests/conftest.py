"""
Pytest configuration for WASM UDF tests

Test modules are written in WAT and compiled with wasmtime.wat2wasm into a
fresh store directory for every test.
"""

import pytest

from platformq_wasm_udf import EvalContext, ExecutionEngine, ModuleStore, WasmUdfSettings

from tests.fixtures.modules import MODULES, compile_wat


@pytest.fixture
def store_dir(tmp_path):
    path = tmp_path / "wasm_store"
    path.mkdir()
    for module_id, source in MODULES.items():
        (path / f"{module_id}.wasm").write_bytes(compile_wat(source))
    return path


@pytest.fixture
def settings(store_dir):
    return WasmUdfSettings(store_path=str(store_dir))


@pytest.fixture
def store(settings):
    return ModuleStore.init(settings=settings)


@pytest.fixture
def engine(settings):
    return ExecutionEngine(settings)


@pytest.fixture
def ctx(store, engine):
    return EvalContext(store=store, engine=engine)
