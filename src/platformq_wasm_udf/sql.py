"""
DuckDB binding for WASM scalar UDFs.

    store = ModuleStore.init()
    ctx = EvalContext(store=store, engine=ExecutionEngine())
    register_wasm_function(conn, "double_it", 1, ctx, ResultKind.INT)
    conn.execute("SELECT double_it(21)").fetchone()  # (42,)
"""

import logging

import duckdb

from .adapter import ColumnRef, EvalContext, ResultKind, ScalarFunctionAdapter

logger = logging.getLogger(__name__)

RETURN_TYPES = {
    ResultKind.REAL: "DOUBLE",
    ResultKind.INT: "BIGINT",
}


def get_registered_functions(conn: duckdb.DuckDBPyConnection) -> set:
    """Names of the scalar functions currently known to the connection"""
    result = conn.execute(
        "SELECT function_name FROM duckdb_functions() WHERE function_type = 'scalar'"
    ).fetchall()
    return {row[0] for row in result}


def register_wasm_function(
    conn: duckdb.DuckDBPyConnection,
    name: str,
    module_id: int,
    context: EvalContext,
    result_kind: ResultKind = ResultKind.REAL,
    parameter_type: str = "BIGINT",
) -> bool:
    """
    Register ``name(x)`` as a scalar function evaluated by the WASM module
    ``module_id``.

    NULL handling is left to the adapter, so a missing module yields NULL
    rather than a query error. Returns False if a scalar function with this
    name already exists.
    """
    if name in get_registered_functions(conn):
        logger.debug(f"Scalar function {name} already registered, skipping")
        return False

    result_kind = ResultKind(result_kind)
    adapter = ScalarFunctionAdapter(module_id, [ColumnRef(0)], result_kind)

    def wasm_udf(value):
        return adapter.eval(context, (value,))

    conn.create_function(
        name,
        wasm_udf,
        [parameter_type],
        RETURN_TYPES[result_kind],
        null_handling="special",
    )
    logger.info(f"Registered WASM UDF {name} -> module {module_id} ({RETURN_TYPES[result_kind]})")
    return True
