"""
Export Processing Strategies
Row-set transformations applied before serialization.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from pricesync.export.composite import IMPORT_OPERATION_KEY
from pricesync.models.entities import parse_number

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Predicate = Callable[[Row], bool]

DATE_PARAM_FORMAT = "%Y-%m-%d"


class ProcessingStrategy:
    """Base export processing strategy: returns the rows unchanged."""

    strategy_id = "simple"
    display_name = "Simple export"
    description = "Exports every row without changes"

    def process(self, rows: List[Row], params: Dict[str, str]) -> List[Row]:
        return rows


class FilteredProcessing(ProcessingStrategy):
    """
    Keeps rows matching every configured predicate.

    Supported parameters:
    - textField / textValue: case-insensitive substring match
    - numericField / minValue / maxValue: inclusive numeric range
    - dateField / fromDate / toDate: inclusive date range (yyyy-MM-dd)
    - importOperations: comma-separated import operation ids

    A predicate with missing or invalid parameters is skipped. A row whose
    value is empty or unparsable never matches a configured predicate.
    """

    strategy_id = "filtered"
    display_name = "Filtered export"
    description = "Exports rows matching text, numeric range, date range and operation filters"

    def process(self, rows: List[Row], params: Dict[str, str]) -> List[Row]:
        predicates = [
            predicate
            for predicate in (
                self._text_predicate(params),
                self._numeric_predicate(params),
                self._date_predicate(params),
                self._operations_predicate(params),
            )
            if predicate is not None
        ]
        if not predicates:
            return rows

        filtered = [row for row in rows if all(predicate(row) for predicate in predicates)]
        logger.info(f"Filtered export rows: {len(filtered)}/{len(rows)} kept")
        return filtered

    @staticmethod
    def _text_predicate(params: Dict[str, str]) -> Optional[Predicate]:
        field = params.get("textField")
        text = params.get("textValue")
        if not field or not text:
            return None
        needle = text.lower()

        def matches(row: Row) -> bool:
            value = row.get(field)
            return value is not None and needle in str(value).lower()

        return matches

    @staticmethod
    def _numeric_predicate(params: Dict[str, str]) -> Optional[Predicate]:
        field = params.get("numericField")
        if not field:
            return None
        minimum = _parse_param(params.get("minValue"), float, "minValue")
        maximum = _parse_param(params.get("maxValue"), float, "maxValue")
        if minimum is None and maximum is None:
            return None

        def matches(row: Row) -> bool:
            number = _to_number(row.get(field))
            if number is None:
                return False
            if minimum is not None and number < minimum:
                return False
            if maximum is not None and number > maximum:
                return False
            return True

        return matches

    @staticmethod
    def _date_predicate(params: Dict[str, str]) -> Optional[Predicate]:
        field = params.get("dateField")
        if not field:
            return None
        start = _parse_param(params.get("fromDate"), _parse_date_param, "fromDate")
        end = _parse_param(params.get("toDate"), _parse_date_param, "toDate")
        if start is None and end is None:
            return None

        def matches(row: Row) -> bool:
            value = _to_date(row.get(field))
            if value is None:
                return False
            if start is not None and value < start:
                return False
            if end is not None and value > end:
                return False
            return True

        return matches

    @staticmethod
    def _operations_predicate(params: Dict[str, str]) -> Optional[Predicate]:
        raw = params.get("importOperations")
        if not raw:
            return None
        operation_ids = set()
        for token in raw.split(","):
            token = token.strip()
            if not token:
                continue
            try:
                operation_ids.add(int(token))
            except ValueError:
                logger.warning(f"Ignoring invalid import operation id '{token}'")
        if not operation_ids:
            return None

        def matches(row: Row) -> bool:
            return row.get(IMPORT_OPERATION_KEY) in operation_ids

        return matches


def _parse_param(raw: Optional[str], parser: Callable[[str], Any], name: str) -> Any:
    if raw is None or not str(raw).strip():
        return None
    try:
        return parser(str(raw).strip())
    except ValueError:
        logger.warning(f"Ignoring invalid filter parameter {name}={raw!r}")
        return None


def _parse_date_param(raw: str) -> date:
    return datetime.strptime(raw, DATE_PARAM_FORMAT).date()


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return parse_number(str(value))
    except ValueError:
        return None


def _to_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return _parse_date_param(str(value).strip()[:10])
    except ValueError:
        return None


def default_processors() -> List[ProcessingStrategy]:
    return [ProcessingStrategy(), FilteredProcessing()]
