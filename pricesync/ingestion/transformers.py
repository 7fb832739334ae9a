"""
Value Transformations
Named string transformations applied by mapping rules, chained with "|".
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from pricesync.ingestion.errors import MappingError
from pricesync.models.entities import parse_bool, parse_date, parse_number

Transformation = Callable[[str, Optional[str]], str]


def _trim(value: str, arg: Optional[str]) -> str:
    return value.strip()


def _upper(value: str, arg: Optional[str]) -> str:
    return value.upper()


def _lower(value: str, arg: Optional[str]) -> str:
    return value.lower()


def _number(value: str, arg: Optional[str]) -> str:
    number = parse_number(value)
    if arg:
        return f"{number:.{int(arg)}f}"
    return repr(number)


def _boolean(value: str, arg: Optional[str]) -> str:
    return "true" if parse_bool(value) else "false"


def _date(value: str, arg: Optional[str]) -> str:
    """Parse with the given strptime format (or the known formats) and emit ISO."""
    if arg:
        return datetime.strptime(value.strip(), arg).date().isoformat()
    return parse_date(value.strip()).isoformat()


def _replace(value: str, arg: Optional[str]) -> str:
    if not arg or "=" not in arg:
        return value
    old, new = arg.split("=", 1)
    return value.replace(old, new)


TRANSFORMATIONS: Dict[str, Transformation] = {
    "trim": _trim,
    "upper": _upper,
    "uppercase": _upper,
    "lower": _lower,
    "lowercase": _lower,
    "number": _number,
    "boolean": _boolean,
    "date": _date,
    "replace": _replace,
}


def register_transformation(name: str, func: Transformation) -> None:
    """Add a named transformation usable from mapping rules."""
    TRANSFORMATIONS[name.lower()] = func


def parse_spec(spec: str) -> List[Tuple[str, Optional[str]]]:
    """Split "trim|date:%d.%m.%Y" into [("trim", None), ("date", "%d.%m.%Y")]."""
    steps = []
    for part in spec.split("|"):
        part = part.strip()
        if not part:
            continue
        name, _, arg = part.partition(":")
        steps.append((name.strip().lower(), arg or None))
    return steps


def compile_transformation(spec: Optional[str], column: str = "") -> Optional[Callable[[str], str]]:
    """
    Build a single callable for a transformation chain.

    Args:
        spec: Transformation chain, e.g. "trim|upper"
        column: Source column, used in error messages

    Returns:
        Callable applying every step in order, or None for an empty spec

    Raises:
        MappingError: if a step names an unknown transformation
    """
    if not spec or not spec.strip():
        return None

    steps = parse_spec(spec)
    unknown = [name for name, _ in steps if name not in TRANSFORMATIONS]
    if unknown:
        raise MappingError(
            f"Unknown transformation(s) {', '.join(unknown)} for column '{column}'",
            columns=[column],
        )

    def apply(value: str) -> str:
        for name, arg in steps:
            value = TRANSFORMATIONS[name](value, arg)
        return value

    return apply
