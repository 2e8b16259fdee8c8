"""
Scalar function adapter: evaluates a WASM UDF against one row.

The adapter evaluates its single child expression, fetches the configured
module, passes the input as text to the module's entry point and projects the
first result back into the declared SQL result kind. NULL input and a missing
module both evaluate to NULL; every other failure propagates to the query layer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from .engine import ExecutionEngine
from .exceptions import ModuleNotFound
from .store import ModuleStore
from .values import ValueKind, WasmValue, stringify

logger = logging.getLogger(__name__)

Scalar = Union[int, float]


class ResultKind(str, Enum):
    """SQL result type a WASM UDF is declared with"""
    REAL = "real"
    INT = "int"


_ACCEPTED_KINDS = {
    ResultKind.REAL: (ValueKind.F64, ValueKind.F32),
    ResultKind.INT: (ValueKind.I64, ValueKind.I32),
}


@dataclass
class EvalContext:
    store: ModuleStore
    engine: ExecutionEngine


class Expression(ABC):
    @abstractmethod
    def eval(self, ctx: EvalContext, row: Sequence[Any]) -> Any:
        ...


@dataclass
class ColumnRef(Expression):
    offset: int

    def eval(self, ctx: EvalContext, row: Sequence[Any]) -> Any:
        return row[self.offset]


@dataclass
class Constant(Expression):
    value: Any

    def eval(self, ctx: EvalContext, row: Sequence[Any]) -> Any:
        return self.value


def project_result(results: List[WasmValue], result_kind: ResultKind) -> Optional[Scalar]:
    """First result converted to ``result_kind``, or None if it has another kind"""
    if not results:
        return None
    first = results[0]
    if first.kind not in _ACCEPTED_KINDS[result_kind]:
        return None
    if result_kind is ResultKind.REAL:
        return float(first.value)
    return int(first.value)


class ScalarFunctionAdapter:
    """A single-argument scalar UDF backed by a stored WASM module"""

    def __init__(self, module_id: int, children: Sequence[Expression],
                 result_kind: ResultKind = ResultKind.REAL):
        if len(children) != 1:
            raise ValueError(f"WASM scalar functions take exactly one argument, got {len(children)}")
        self.module_id = module_id
        self.children = list(children)
        self.result_kind = ResultKind(result_kind)

    def eval(self, ctx: EvalContext, row: Sequence[Any]) -> Optional[Scalar]:
        return self._evaluate(ctx, row, self.result_kind)

    def eval_real(self, ctx: EvalContext, row: Sequence[Any]) -> Optional[float]:
        return self._evaluate(ctx, row, ResultKind.REAL)

    def eval_int(self, ctx: EvalContext, row: Sequence[Any]) -> Optional[int]:
        return self._evaluate(ctx, row, ResultKind.INT)

    def _evaluate(self, ctx: EvalContext, row: Sequence[Any], result_kind: ResultKind) -> Optional[Scalar]:
        value = self.children[0].eval(ctx, row)
        if value is None:
            return None

        try:
            module = ctx.store.get(self.module_id)
        except ModuleNotFound as e:
            logger.warning(f"WASM UDF evaluated to NULL: {e}")
            return None

        results = ctx.engine.execute(module, module.entry_point, [stringify(value)])
        return project_result(results, result_kind)
