"""Argument validation for tool calls and vault path checks."""

import re
from typing import Annotated, Any, Dict, Mapping, Type, TypeVar

from pydantic import AfterValidator, BaseModel, Field, ValidationError

from errors import ErrorCode, ObsidianError

M = TypeVar("M", bound=BaseModel)

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "auth", "credential")
DRIVE_LETTER = re.compile(r"^[a-zA-Z]:")


def validate_file_path(filepath: str) -> None:
    """Reject traversal sequences and absolute paths.

    Raises:
        ObsidianError: BAD_REQUEST describing the problem.
    """
    normalized = filepath.replace("\\", "/")
    if "../" in normalized or normalized == ".." or normalized.endswith("/.."):
        raise ObsidianError("Invalid file path: Path traversal not allowed", ErrorCode.BAD_REQUEST)
    if normalized.startswith("/") or DRIVE_LETTER.match(normalized):
        raise ObsidianError("Invalid file path: Absolute paths not allowed", ErrorCode.BAD_REQUEST)


def _check_vault_path(value: str) -> str:
    try:
        validate_file_path(value)
    except ObsidianError as e:
        raise ValueError(e.message) from None
    return value


# A vault-relative path argument. Shows up as {"format": "path"} in tool schemas.
VaultPath = Annotated[str, AfterValidator(_check_vault_path), Field(json_schema_extra={"format": "path"})]


def describe_error(error: Dict[str, Any]) -> str:
    """One readable line for a single pydantic error entry."""
    field = ".".join(str(part) for part in error["loc"]) or "arguments"
    if error["type"] == "missing":
        return f"Missing required field: {field}"
    if error["type"] == "extra_forbidden":
        return f"Unknown field: {field}"
    return f"Field {field}: {error['msg']}"


def validate_arguments(model: Type[M], args: Any) -> M:
    """Validate raw tool arguments against an input model.

    Every violation is collected, not just the first one.

    Raises:
        ObsidianError: BAD_REQUEST with ``details["errors"]`` listing each violation.
    """
    if args is None:
        args = {}
    if not isinstance(args, Mapping):
        errors = ["Arguments must be an object"]
    else:
        try:
            return model.model_validate(dict(args))
        except ValidationError as e:
            errors = [describe_error(err) for err in e.errors()]
    raise ObsidianError(
        f"Invalid tool arguments: {', '.join(errors)}",
        ErrorCode.BAD_REQUEST,
        {"errors": errors},
    )


def mask_sensitive(data: Any) -> Any:
    """Copy of ``data`` with credential-looking values replaced, for logging."""
    if not isinstance(data, Mapping):
        return data
    masked: Dict[str, Any] = {}
    for key, value in data.items():
        if any(field in str(key).lower() for field in SENSITIVE_FIELDS):
            masked[key] = "********"
        elif isinstance(value, Mapping):
            masked[key] = mask_sensitive(value)
        else:
            masked[key] = value
    return masked
