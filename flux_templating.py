"""
Variable Store & Template Engine
================================
Per-pass variable handling for chained scenarios.

- substitute(): replaces ``{{ name }}`` placeholders with stored values
- extract(): pulls a value out of a JSON response body with a JSONPath
- ExtractedValue: closed variant (string / number / bool / other) with a
  fixed stringification rule
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Optional

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as parse_jsonpath

logger = logging.getLogger(__name__)


# Variable name -> extracted string value. One per chain pass.
VariableStore = Dict[str, str]


class ValueKind(Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    OTHER = "other"


@dataclass(frozen=True)
class ExtractedValue:
    """A JSON value picked out of a response, already reduced to text."""
    kind: ValueKind
    text: str

    @classmethod
    def from_json(cls, value: Any) -> Optional["ExtractedValue"]:
        """
        Classify a decoded JSON value.
        Returns None for JSON null (nothing to store).
        """
        if value is None:
            return None
        # bool first: True/False are ints in Python
        if isinstance(value, bool):
            return cls(ValueKind.BOOL, "true" if value else "false")
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        if isinstance(value, (int, float)):
            return cls(ValueKind.NUMBER, json.dumps(value))
        return cls(ValueKind.OTHER, json.dumps(value, separators=(",", ":")))

    def __str__(self) -> str:
        return self.text


class ExtractionError(Exception):
    """Raised when a body or path expression cannot be used for extraction."""


def substitute(template: str, store: VariableStore) -> str:
    """
    Replace every ``{{ name }}`` (single space padding) with its stored value.
    Placeholders for unknown names are left untouched.
    """
    result = template
    for name, value in store.items():
        result = result.replace("{{ " + name + " }}", value)
    return result


@lru_cache(maxsize=256)
def _compile(path_expr: str):
    try:
        return parse_jsonpath(path_expr)
    except (JsonPathLexerError, JsonPathParserError) as e:
        raise ExtractionError(f"Invalid JSONPath '{path_expr}': {e}") from e


def extract_value(document: Any, path_expr: str) -> Optional[ExtractedValue]:
    """
    Resolve ``path_expr`` against an already decoded JSON document.

    The first match wins when the path selects several values. No match or a
    JSON null yields None.
    """
    expression = _compile(path_expr)
    try:
        matches = expression.find(document)
    except Exception as e:
        # Paths like $.a[1:2:0] parse but fail against the document
        raise ExtractionError(f"Cannot evaluate JSONPath '{path_expr}': {e}") from e
    if not matches:
        return None
    return ExtractedValue.from_json(matches[0].value)


def extract(body: str, path_expr: str) -> Optional[ExtractedValue]:
    """Parse ``body`` as JSON and resolve ``path_expr`` against it."""
    try:
        document = json.loads(body)
    except ValueError as e:
        raise ExtractionError(f"Response body is not valid JSON: {e}") from e
    return extract_value(document, path_expr)


def apply_extractions(body: str, rules: Dict[str, str], store: VariableStore) -> int:
    """
    Apply every extraction rule to ``body`` and write hits into ``store``.

    Rules are independent: a rule that fails is logged and skipped, the others
    still run. Returns the number of variables set.
    """
    if not rules:
        return 0

    try:
        document = json.loads(body)
    except ValueError as e:
        logger.warning("Failed to parse JSON response: %s", e)
        return 0

    applied = 0
    for var_name, path_expr in rules.items():
        try:
            value = extract_value(document, path_expr)
        except ExtractionError as e:
            logger.warning("JSONPath error for '%s': %s", path_expr, e)
            continue

        if value is None:
            logger.debug("No value for variable '%s' at '%s'", var_name, path_expr)
            continue

        store[var_name] = str(value)
        applied += 1
        logger.debug("Extracted variable '%s' = '%s'", var_name, value)

    return applied
