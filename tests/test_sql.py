import pytest

duckdb = pytest.importorskip("duckdb")

from platformq_wasm_udf import ResultKind  # noqa: E402
from platformq_wasm_udf.sql import get_registered_functions, register_wasm_function  # noqa: E402

from tests.fixtures.modules import MISSING_ID  # noqa: E402


@pytest.fixture
def conn():
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


def test_udf_evaluates_per_row(conn, ctx):
    assert register_wasm_function(conn, "double_it", 1, ctx, ResultKind.INT)

    rows = conn.execute("SELECT double_it(range) FROM range(4) ORDER BY range").fetchall()

    assert [r[0] for r in rows] == [0, 2, 4, 6]


def test_real_udf(conn, ctx):
    register_wasm_function(conn, "half", 2, ctx, ResultKind.REAL)

    assert conn.execute("SELECT half(5)").fetchone() == (2.5,)


def test_null_input_and_missing_module_yield_null(conn, ctx):
    register_wasm_function(conn, "double_it", 1, ctx, ResultKind.INT)
    register_wasm_function(conn, "missing", MISSING_ID, ctx, ResultKind.INT)

    assert conn.execute("SELECT double_it(NULL)").fetchone() == (None,)
    assert conn.execute("SELECT missing(1)").fetchone() == (None,)


def test_engine_failures_fail_the_query(conn, ctx):
    register_wasm_function(conn, "no_entry_point", 10, ctx, ResultKind.INT)

    with pytest.raises(duckdb.Error):
        conn.execute("SELECT no_entry_point(1)").fetchall()


def test_registration_is_skipped_when_name_exists(conn, ctx):
    assert register_wasm_function(conn, "double_it", 1, ctx, ResultKind.INT)
    assert not register_wasm_function(conn, "double_it", 2, ctx, ResultKind.REAL)
    assert "double_it" in get_registered_functions(conn)
