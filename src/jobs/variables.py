"""Template variable validation and coercion.

Request payloads carry variables as loosely typed JSON (often plain strings
from form fields). They are checked against the template's closed set of
declared variables and coerced to the declared type before anything touches
the filesystem.
"""

import json
import math
import re
from typing import Any, Mapping

from src.core.exceptions import ValidationError
from src.models.schemas import Template, VariableSpec, VariableType

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}

ENVIRONMENT_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")


class _CoercionError(Exception):
    pass


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise _CoercionError


def _to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise _CoercionError
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise _CoercionError from None
    else:
        raise _CoercionError
    if isinstance(number, float) and not math.isfinite(number):
        raise _CoercionError
    return number


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise _CoercionError


def _decode_json(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise _CoercionError from None


def _to_list(value: Any) -> list:
    if isinstance(value, str):
        value = _decode_json(value)
    if isinstance(value, (list, tuple)):
        return list(value)
    raise _CoercionError


def _to_map(value: Any) -> dict:
    if isinstance(value, str):
        value = _decode_json(value)
    if isinstance(value, dict) and all(isinstance(k, str) for k in value):
        return dict(value)
    raise _CoercionError


_COERCERS = {
    VariableType.STRING: _to_string,
    VariableType.NUMBER: _to_number,
    VariableType.BOOLEAN: _to_boolean,
    VariableType.LIST: _to_list,
    VariableType.MAP: _to_map,
}


def coerce_value(spec: VariableSpec, value: Any) -> Any:
    """Coerce one value to its declared type.

    Raises:
        ValidationError: ``"<name> must be a <type>"``.
    """
    try:
        return _COERCERS[spec.type](value)
    except _CoercionError:
        raise ValidationError(f"{spec.name} must be a {spec.type.value}") from None


def resolve_variables(template: Template, supplied: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate supplied variables against the template and fill defaults.

    Every problem is collected; the raised ValidationError message joins them
    with ``"; "``.

    Returns:
        Resolved variables in declaration order.
    """
    supplied = dict(supplied or {})
    errors: list[str] = []
    resolved: dict[str, Any] = {}

    for spec in template.variables:
        value = supplied.pop(spec.name, None)
        if value is None:
            if spec.default is not None:
                resolved[spec.name] = spec.default
            elif spec.required:
                errors.append(f"{spec.name} is required")
            continue
        try:
            resolved[spec.name] = coerce_value(spec, value)
        except ValidationError as e:
            errors.append(e.message)

    for name in sorted(supplied):
        errors.append(f"unknown variable: {name}")

    if errors:
        raise ValidationError("; ".join(errors), errors)
    return resolved


def validate_environment(environment: str) -> str:
    if not isinstance(environment, str) or not ENVIRONMENT_PATTERN.match(environment):
        raise ValidationError(
            "environment must be lowercase letters, digits, '-' or '_' (max 63 chars)"
        )
    return environment
