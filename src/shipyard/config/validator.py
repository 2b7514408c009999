"""Validation utilities for Shipyard configuration."""

from typing import Any

from pydantic import ValidationError as PydanticValidationError


def _field_path(loc: tuple[Any, ...]) -> str:
    return ".".join(str(item) for item in loc) if loc else "(document)"


def _describe(error: Any) -> str:
    error_type = error.get("type", "")
    msg = error.get("msg", "Unknown error")
    input_val = error.get("input")

    if error_type == "missing":
        return "required field is missing"
    if error_type == "extra_forbidden":
        return "unknown field (check the spelling)"
    if error_type == "value_error" and not isinstance(input_val, dict):
        return f"{msg} (received: {input_val!r})"
    # Object-level validators receive the whole mapping as input
    return msg


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into human-readable messages.

    Each message names the dotted field path (for example
    ``components.2.post_deploy.0.fatal``) so that users can locate the
    problem in their deployment file.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        List of human-readable error messages, one per field error
    """
    errors = [
        f"Field '{_field_path(tuple(error.get('loc', ())))}': {_describe(error)}"
        for error in exc.errors()
    ]
    return errors or ["Validation failed with unknown error"]
