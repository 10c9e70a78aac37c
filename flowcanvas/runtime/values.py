"""JavaScript value semantics for the step interpreter.

Mapping: number -> float (an IEEE double; integral values within the safe
integer range are held as int so `6` prints as 6), string -> str,
boolean -> bool, null -> None, undefined -> UNDEFINED, array -> list,
object -> dict with string keys.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict


class _Undefined:
    """The `undefined` value. Falsy, singleton, survives deepcopy."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Undefined, ())


UNDEFINED = _Undefined()


def is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


MAX_SAFE_INTEGER = 2**53


def to_double(n: Any) -> float:
    """Round an exact Python number to the nearest double; overflow is +-Infinity."""
    try:
        return float(n)
    except OverflowError:
        return math.inf if n > 0 else -math.inf


def normalize(n: Any) -> Any:
    """Round to a double, then keep safe integral values as int for display."""
    d = to_double(n)
    if d.is_integer() and abs(d) <= MAX_SAFE_INTEGER:
        return int(d)
    return d


def parse_number(text: str) -> Any:
    t = text.strip().replace("_", "")
    if t == "":
        return 0
    lowered = t.lower()
    try:
        if lowered.startswith("0x"):
            return normalize(int(lowered, 16))
        if lowered.startswith("0o"):
            return normalize(int(lowered[2:], 8))
        if lowered.startswith("0b"):
            return normalize(int(lowered[2:], 2))
        if lowered.endswith("n"):  # BigInt literal, read as a plain number
            return normalize(int(lowered[:-1]))
        if lowered in ("infinity", "+infinity"):
            return math.inf
        if lowered == "-infinity":
            return -math.inf
        return normalize(float(t))
    except ValueError:
        return math.nan


def to_number(v: Any) -> Any:
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, float):
        return v
    if is_number(v):
        return normalize(v)
    if v is None:
        return 0
    if v is UNDEFINED:
        return math.nan
    if isinstance(v, str):
        return parse_number(v)
    if isinstance(v, list):
        if not v:
            return 0
        if len(v) == 1:
            return to_number(to_js_string(v[0]))
    return math.nan


def _format_number(n: Any) -> str:
    if isinstance(n, int):
        return str(n)
    if math.isnan(n):
        return "NaN"
    if math.isinf(n):
        return "Infinity" if n > 0 else "-Infinity"
    if n.is_integer():
        return str(int(n))
    return repr(n)


def to_js_string(v: Any) -> str:
    if isinstance(v, str):
        return v
    if v is None:
        return "null"
    if v is UNDEFINED:
        return "undefined"
    if isinstance(v, bool):
        return "true" if v else "false"
    if is_number(v):
        return _format_number(v)
    if isinstance(v, list):
        return ",".join("" if x is None or x is UNDEFINED else to_js_string(x) for x in v)
    if isinstance(v, dict):
        return "[object Object]"
    return str(v)


def truthy(v: Any) -> bool:
    if v is None or v is UNDEFINED or v is False:
        return False
    if is_number(v):
        return v != 0 and v == v  # NaN is the only value unequal to itself
    if isinstance(v, str):
        return v != ""
    return True


def type_of(v: Any) -> str:
    if v is UNDEFINED:
        return "undefined"
    if isinstance(v, bool):
        return "boolean"
    if is_number(v):
        return "number"
    if isinstance(v, str):
        return "string"
    return "object"


def strict_equals(a: Any, b: Any) -> bool:
    if type_of(a) != type_of(b):
        return False
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return a is b
    if a is None or b is None:
        return a is b
    return a == b


def loose_equals(a: Any, b: Any) -> bool:
    nullish = (None, UNDEFINED)
    if a in nullish or b in nullish:
        return a in nullish and b in nullish
    if type_of(a) == type_of(b):
        return strict_equals(a, b)
    if isinstance(a, (list, dict)):
        return loose_equals(to_js_string(a), b)
    if isinstance(b, (list, dict)):
        return loose_equals(a, to_js_string(b))
    return to_number(a) == to_number(b)


def _divide(a: Any, b: Any) -> Any:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1, b)
    return a / b


def _modulo(a: Any, b: Any) -> Any:
    if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
        return math.nan
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def _odd_integer(x: float) -> bool:
    return math.isfinite(x) and x.is_integer() and int(x) % 2 == 1


def _power(a: Any, b: Any) -> Any:
    a, b = to_double(a), to_double(b)
    if math.isnan(b):
        return math.nan
    if b == 0:
        return 1
    if math.isnan(a) or (abs(a) == 1 and math.isinf(b)):
        return math.nan
    try:
        r = a ** b
    except ZeroDivisionError:
        # 0 ** negative
        return math.copysign(math.inf, a) if _odd_integer(b) else math.inf
    except OverflowError:
        return -math.inf if a < 0 and _odd_integer(b) else math.inf
    if isinstance(r, complex):
        return math.nan
    return r


def _int32(v: Any) -> int:
    n = to_number(v)
    if math.isnan(n) or math.isinf(n):
        return 0
    n = int(n) & 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def _compare(a: Any, b: Any, op: Callable[[Any, Any], bool]) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return op(a, b)
    x, y = to_number(a), to_number(b)
    if math.isnan(x) or math.isnan(y):
        return False
    return op(x, y)


def add(a: Any, b: Any) -> Any:
    if isinstance(a, (list, dict)):
        a = to_js_string(a)
    if isinstance(b, (list, dict)):
        b = to_js_string(b)
    if isinstance(a, str) or isinstance(b, str):
        return to_js_string(a) + to_js_string(b)
    return normalize(to_number(a) + to_number(b))


def _numeric(fn: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
    return lambda a, b: normalize(fn(to_number(a), to_number(b)))


# Non-short-circuit binary operators
BINARY_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": add,
    "-": _numeric(lambda a, b: a - b),
    "*": _numeric(lambda a, b: a * b),
    "/": _numeric(_divide),
    "%": _numeric(_modulo),
    "**": _numeric(_power),
    "<": lambda a, b: _compare(a, b, lambda x, y: x < y),
    ">": lambda a, b: _compare(a, b, lambda x, y: x > y),
    "<=": lambda a, b: _compare(a, b, lambda x, y: x <= y),
    ">=": lambda a, b: _compare(a, b, lambda x, y: x >= y),
    "==": loose_equals,
    "!=": lambda a, b: not loose_equals(a, b),
    "===": strict_equals,
    "!==": lambda a, b: not strict_equals(a, b),
    "&": lambda a, b: _int32(_int32(a) & _int32(b)),
    "|": lambda a, b: _int32(_int32(a) | _int32(b)),
    "^": lambda a, b: _int32(_int32(a) ^ _int32(b)),
    "<<": lambda a, b: _int32(_int32(a) << (_int32(b) & 31)),
    ">>": lambda a, b: _int32(a) >> (_int32(b) & 31),
    ">>>": lambda a, b: (_int32(a) & 0xFFFFFFFF) >> (_int32(b) & 31),
}


def _js_round(x: Any) -> Any:
    return math.floor(x + 0.5)


def _sign(x: Any) -> Any:
    if math.isnan(x) or x == 0:
        return x
    return 1 if x > 0 else -1


def _extreme(pick: Callable[..., Any], empty: float) -> Callable[..., Any]:
    def fn(*xs: Any) -> Any:
        if not xs:
            return empty
        if any(math.isnan(x) for x in xs):
            return math.nan
        return pick(xs)

    return fn


def _integral(fn: Callable[[Any], Any]) -> Callable[..., Any]:
    def wrapped(x: Any = math.nan, *_: Any) -> Any:
        if not math.isfinite(x):
            return x
        return fn(x)

    return wrapped


def _guard(fn: Callable[..., Any]) -> Callable[..., Any]:
    def wrapped(*xs: Any) -> Any:
        try:
            return fn(*xs)
        except (ValueError, OverflowError):
            return math.nan

    return wrapped


# Numeric Math.* allow-list; arguments are coerced with to_number first.
MATH_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": lambda x=math.nan, *_: abs(x),
    "floor": _integral(math.floor),
    "ceil": _integral(math.ceil),
    "round": _integral(_js_round),
    "trunc": _integral(math.trunc),
    "sign": lambda x=math.nan, *_: _sign(x),
    "sqrt": _guard(lambda x=math.nan, *_: math.sqrt(x)),
    "cbrt": _guard(lambda x=math.nan, *_: math.copysign(abs(x) ** (1 / 3), x)),
    "pow": lambda x=math.nan, y=math.nan, *_: _power(x, y),
    "exp": _guard(lambda x=math.nan, *_: math.exp(x)),
    "log": _guard(lambda x=math.nan, *_: math.log(x) if x > 0 else (-math.inf if x == 0 else math.nan)),
    "max": _extreme(max, -math.inf),
    "min": _extreme(min, math.inf),
}

MATH_CONSTANTS: Dict[str, float] = {
    "PI": math.pi,
    "E": math.e,
    "LN2": math.log(2),
    "LN10": math.log(10),
    "SQRT2": math.sqrt(2),
}


def to_jsonable(v: Any) -> Any:
    """Plain JSON-compatible rendering of an interpreter value."""
    if v is UNDEFINED:
        return None
    if isinstance(v, float) and not math.isfinite(v):
        return to_js_string(v)
    if isinstance(v, list):
        return [to_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): to_jsonable(x) for k, x in v.items()}
    return v
