"""Wire-tag classification for values returned to the counterpart."""

import math
import numbers
import operator
from typing import Literal

WireTag = Literal["string", "big", "num", "obj", "fn", "class", "void"]

TAG_STRING: WireTag = "string"
TAG_BIG: WireTag = "big"
TAG_NUM: WireTag = "num"
TAG_OBJ: WireTag = "obj"
TAG_FN: WireTag = "fn"
TAG_CLASS: WireTag = "class"
TAG_VOID: WireTag = "void"

DIRECT_TAGS: frozenset[str] = frozenset({TAG_STRING, TAG_BIG, TAG_NUM, TAG_VOID})

SAFE_INTEGER_BITS: int = 53
MAX_SAFE_INTEGER: int = 2**SAFE_INTEGER_BITS - 1


def _integer_value(value: object) -> int | None:
    """Return the exact integer behind ``value``, if it is integer-like.

    :param value: Candidate runtime value.
    :returns: ``int`` itself, the ``__index__`` result, or ``None``.
    """
    if isinstance(value, bool) is True:
        return None
    if isinstance(value, int) is True:
        return value  # type: ignore[return-value]
    has_index: bool = hasattr(type(value), "__index__")
    if has_index is False:
        return None
    try:
        return operator.index(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _is_big_integer(value: object) -> bool:
    """Report whether ``value`` is an integer the wire cannot carry exactly.

    :param value: Candidate runtime value.
    :returns: ``True`` for integer-like values outside the safe integer range.
    """
    integer: int | None = _integer_value(value)
    if integer is None:
        return False
    return abs(integer) > MAX_SAFE_INTEGER


def _coerce_number(value: object) -> int | float | None:
    """Coerce ``value`` to a number, or return ``None`` when it does not coerce.

    :param value: Candidate runtime value.
    :returns: Coerced number, or ``None`` for non-numeric values and NaN.
    """
    if isinstance(value, (bool, int)) is True:
        return value  # type: ignore[return-value]
    if isinstance(value, float) is True:
        if math.isnan(value) is True:
            return None
        return value
    if isinstance(value, complex) is True:
        return None

    has_index: bool = hasattr(type(value), "__index__")
    if has_index is True:
        try:
            return operator.index(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    is_real: bool = isinstance(value, numbers.Real)
    has_float: bool = hasattr(type(value), "__float__")
    if is_real is False and has_float is False:
        return None
    try:
        coerced: float = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(coerced) is True:
        return None
    return coerced


def classify_value(value: object) -> WireTag:
    """Pick the wire tag for one runtime value.

    The checks run in a fixed order: big integer, numeric coercion,
    structured object, text, callable. A numeric wrapper object therefore
    classifies as ``num`` even though it is also an object.

    :param value: Runtime value.
    :returns: Wire tag.
    """
    if _is_big_integer(value) is True:
        return TAG_BIG
    if _coerce_number(value) is not None:
        return TAG_NUM

    is_absent: bool = value is None
    is_nan: bool = isinstance(value, float) is True and math.isnan(value) is True
    is_text: bool = isinstance(value, str)
    is_callable: bool = callable(value)
    if is_absent is False and is_nan is False and is_text is False and is_callable is False:
        return TAG_OBJ

    if is_text is True:
        return TAG_STRING

    if is_callable is True:
        if isinstance(value, type) is True:
            return TAG_CLASS
        return TAG_FN

    return TAG_VOID


def wire_value(tag: WireTag, value: object) -> object:
    """Convert a directly transmitted value to its JSON form.

    :param tag: Tag returned by :func:`classify_value`.
    :param value: Runtime value.
    :returns: JSON-compatible value.
    :raises ValueError: If ``tag`` is not transmitted by value.
    """
    if tag == TAG_STRING:
        return value
    # JSON has no infinities; they go out as null
    if tag == TAG_BIG:
        integer: int | None = _integer_value(value)
        try:
            return float(value if integer is None else integer)  # type: ignore[arg-type]
        except OverflowError:
            return None
    if tag == TAG_NUM:
        number: int | float | None = _coerce_number(value)
        if isinstance(number, float) is True and math.isinf(number) is True:
            return None
        return number
    if tag == TAG_VOID:
        return None
    raise ValueError(f"Tag {tag!r} is not transmitted by value")
