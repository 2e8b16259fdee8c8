"""
Typed values crossing the WASM boundary.

Only the four numeric WebAssembly value types are supported. Arguments arrive
as text and are parsed strictly into the kind declared by the target function;
a value that does not parse losslessly is rejected before the call is made.
"""

import re
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Sequence, Union

import wasmtime

from .exceptions import ArgumentConversionError, UnsupportedType

Number = Union[int, float]

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_FLOAT_PATTERN = re.compile(
    r"[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)",
    re.IGNORECASE,
)

_INT_BOUNDS = {
    "i32": (-(2 ** 31), 2 ** 31 - 1),
    "i64": (-(2 ** 63), 2 ** 63 - 1),
}


class ValueKind(str, Enum):
    """WebAssembly numeric value types"""
    I32 = "i32"
    I64 = "i64"
    F32 = "f32"
    F64 = "f64"

    @property
    def is_integer(self) -> bool:
        return self in (ValueKind.I32, ValueKind.I64)

    @classmethod
    def from_valtype(cls, valtype: wasmtime.ValType, position: str) -> "ValueKind":
        """Map a wasmtime ValType, rejecting reference and vector types"""
        name = str(valtype)
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedType(name, position) from None


@dataclass(frozen=True)
class WasmValue:
    """A value tagged with its WebAssembly kind"""
    kind: ValueKind
    value: Number

    @classmethod
    def i32(cls, value: int) -> "WasmValue":
        return cls(ValueKind.I32, value)

    @classmethod
    def i64(cls, value: int) -> "WasmValue":
        return cls(ValueKind.I64, value)

    @classmethod
    def f32(cls, value: float) -> "WasmValue":
        return cls(ValueKind.F32, value)

    @classmethod
    def f64(cls, value: float) -> "WasmValue":
        return cls(ValueKind.F64, value)

    def to_wasmtime(self) -> wasmtime.Val:
        if self.kind is ValueKind.I32:
            return wasmtime.Val.i32(self.value)
        if self.kind is ValueKind.I64:
            return wasmtime.Val.i64(self.value)
        if self.kind is ValueKind.F32:
            return wasmtime.Val.f32(self.value)
        return wasmtime.Val.f64(self.value)


def _round_to_f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def parse_argument(raw: str, kind: ValueKind, index: int) -> WasmValue:
    """
    Parse one textual argument into ``kind``.

    Integers must be plain decimal literals within the kind's range. Floats
    accept decimal and exponent notation plus inf/nan; surrounding whitespace
    and digit separators are rejected. A finite value too large for f32 is a
    conversion error rather than silently becoming infinity.
    """
    if kind.is_integer:
        if not _INT_PATTERN.fullmatch(raw):
            raise ArgumentConversionError(index, kind.value, raw)
        value = int(raw)
        low, high = _INT_BOUNDS[kind.value]
        if not low <= value <= high:
            raise ArgumentConversionError(index, kind.value, raw)
        return WasmValue(kind, value)

    if not _FLOAT_PATTERN.fullmatch(raw):
        raise ArgumentConversionError(index, kind.value, raw)
    value = float(raw)
    if kind is ValueKind.F32:
        try:
            value = _round_to_f32(value)
        except OverflowError:
            raise ArgumentConversionError(index, kind.value, raw) from None
    return WasmValue(kind, value)


def check_value(value: WasmValue, index: int) -> WasmValue:
    """
    Verify an already-typed value fits its kind without loss.

    Integers must be ints within range; floats may be ints or floats. f32
    values come back rounded to single precision.
    """
    raw = value.value
    kind = value.kind
    if isinstance(raw, bool):
        raise ArgumentConversionError(index, kind.value, stringify(raw))

    if kind.is_integer:
        if not isinstance(raw, int):
            raise ArgumentConversionError(index, kind.value, stringify(raw))
        low, high = _INT_BOUNDS[kind.value]
        if not low <= raw <= high:
            raise ArgumentConversionError(index, kind.value, stringify(raw))
        return value

    if not isinstance(raw, (int, float)):
        raise ArgumentConversionError(index, kind.value, stringify(raw))
    try:
        number = float(raw)
        if kind is ValueKind.F32:
            number = _round_to_f32(number)
    except OverflowError:
        raise ArgumentConversionError(index, kind.value, stringify(raw)) from None
    return WasmValue(kind, number)


def parse_arguments(args: Sequence[str], kinds: Sequence[ValueKind]) -> List[WasmValue]:
    return [parse_argument(raw, kind, index) for index, (raw, kind) in enumerate(zip(args, kinds))]


def stringify(value: Any) -> str:
    """Render a scalar as the text a module argument is parsed from"""
    if isinstance(value, float):
        # repr is the shortest text that round-trips to the same float
        return repr(value)
    return str(value)


def results_from_call(raw: Any, kinds: Sequence[ValueKind]) -> List[WasmValue]:
    """Tag the raw return of a wasmtime call with the declared result kinds"""
    if not kinds:
        return []
    if len(kinds) == 1:
        raw = [raw]
    return [WasmValue(kind, value) for kind, value in zip(kinds, raw)]
