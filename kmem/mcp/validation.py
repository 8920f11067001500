"""Argument parsing and structured responses for the kmem MCP server."""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from kmem.core.errors import KmemError, NotFoundError, PersistenceError, ValidationError


class ErrorCode(Enum):
    """Structured error codes for MCP responses."""

    VALIDATION_ERROR = "validation_error"  # 400: Bad input
    NOT_FOUND = "not_found"  # 404: Entity or relation doesn't exist
    PERSISTENCE_ERROR = "persistence_error"  # 503: Storage backend failed
    SYSTEM_ERROR = "system_error"  # 500: Anything else


def error_response(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    hint: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a structured error response.

    Args:
        code: Error code enum value
        message: Human-readable error message
        details: Optional additional details
        hint: Optional hint for resolving the error

    Returns:
        Structured error response dictionary
    """
    response: Dict[str, Any] = {
        "success": False,
        "error_code": code.value,
        "error": message,
    }
    if details:
        response["details"] = details
    if hint:
        response["hint"] = hint
    return response


def success_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Build a structured success response.

    Args:
        data: Response data dictionary

    Returns:
        Response with success=True and data merged in
    """
    return {"success": True, **data}


def error_from_exception(exc: KmemError) -> Dict[str, Any]:
    """Map a KmemError subclass to its error response."""
    if isinstance(exc, ValidationError):
        code = ErrorCode.VALIDATION_ERROR
    elif isinstance(exc, NotFoundError):
        code = ErrorCode.NOT_FOUND
    elif isinstance(exc, PersistenceError):
        code = ErrorCode.PERSISTENCE_ERROR
    else:
        code = ErrorCode.SYSTEM_ERROR
    return error_response(code, exc.message, details=exc.details, hint=exc.hint)


def parse_json_arg(value: Any, name: str) -> Any:
    """Decode an argument that may arrive as a JSON string.

    Clients frequently send arrays and objects stringified. Non-string values
    pass through untouched.

    Raises:
        ValidationError: If a string value is not valid JSON
    """
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"Invalid JSON in '{name}': {e.msg}",
            details={"argument": name},
            hint=f"Pass '{name}' as a JSON array/object or as a JSON-encoded string",
        )


def validate_array_arg(value: Any, name: str, wrap_objects: bool = False) -> List[Any]:
    """Parse an argument and require a list.

    Args:
        value: Raw argument value
        name: Argument name for error messages
        wrap_objects: Accept a single object and wrap it in a list

    Raises:
        ValidationError: If the value is missing or not an array
    """
    parsed = parse_json_arg(value, name)
    if wrap_objects and isinstance(parsed, dict):
        return [parsed]
    if not isinstance(parsed, list):
        raise ValidationError(f"'{name}' must be an array", details={"argument": name})
    return parsed


def validate_object_arg(value: Any, name: str) -> Optional[Dict[str, Any]]:
    """Parse an optional object argument (None stays None)."""
    if value is None or value == "":
        return None
    parsed = parse_json_arg(value, name)
    if not isinstance(parsed, dict):
        raise ValidationError(f"'{name}' must be an object", details={"argument": name})
    return parsed


def require_string_arg(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{name}' is required", details={"argument": name})
    return value


def optional_string_arg(arguments: Dict[str, Any], *names: str) -> Optional[str]:
    """First non-empty value among names (aliases), or None.

    Raises:
        ValidationError: If a present value is not a string
    """
    for name in names:
        value = arguments.get(name)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ValidationError(
                f"'{name}' must be a string",
                details={"argument": name, "type": type(value).__name__},
            )
        return value
    return None


def parse_threshold_arg(value: Any) -> Optional[float]:
    """Accept a threshold as a number or numeric string; None means default."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ValidationError(
                "Threshold must be a number between 0.0 and 1.0",
                details={"threshold": value},
            )
    return value
