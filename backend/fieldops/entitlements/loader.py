"""
Features document parsing and validation.

Provides:
- parse_features_document(): lenient parser used at the storage boundary.
  Malformed input never raises; it degrades to an empty document (or drops
  the offending entry) and logs a warning.
- parse_limits_document(): same rules for a standalone limits document.
- decode_document(): raw JSON object for display, {} when malformed.
- validate_features_document() / validate_limits_document(): strict checks
  used by admin write APIs so bad documents are rejected before storage.

Accepted raw input: None, JSON text (str/bytes), an already-decoded dict,
or a FeaturesDocument (returned unchanged).
"""

import json
import logging
from copy import deepcopy
from typing import Any, Dict, List, Optional, Tuple, Union

from fieldops.entitlements.models import (
    FeaturesDocument,
    Number,
    PageAccess,
    SECTION_KEYS,
    UNLIMITED,
    ValidationResult,
)

logger = logging.getLogger(__name__)

RawDocument = Union[None, str, bytes, Dict[str, Any], FeaturesDocument]

_PAGE_LEVELS = {level.value for level in PageAccess}


def _warn_malformed(message: str, source: str, **context: Any) -> None:
    logger.warning(
        message,
        extra={"source": source, "config_malformed": True, **context}
    )


def _decode(raw: Any, source: str) -> Optional[Dict[str, Any]]:
    """Decode raw input into a dict, or None when absent or malformed."""
    if raw is None:
        return None

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            _warn_malformed("Features document is not valid UTF-8", source, error=str(e))
            return None

    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            _warn_malformed("Features document is not valid JSON", source, error=str(e))
            return None

    if not isinstance(raw, dict):
        _warn_malformed(
            "Features document must be a JSON object",
            source,
            actual_type=type(raw).__name__
        )
        return None

    return raw


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _section(data: Dict[str, Any], key: str, source: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        _warn_malformed(
            f"Ignoring '{key}': expected an object",
            source,
            actual_type=type(value).__name__
        )
        return {}
    return value


def _parse_page_access(section: Dict[str, Any], source: str) -> Dict[str, str]:
    parsed = {}
    for page_id, level in section.items():
        if level is None:
            continue
        if isinstance(level, str) and level in _PAGE_LEVELS:
            parsed[str(page_id)] = level
        else:
            _warn_malformed(
                "Invalid page access level, treating page as 'none'",
                source,
                page_id=page_id,
                level=level
            )
            parsed[str(page_id)] = PageAccess.NONE.value
    return parsed


def _parse_visible_fields(section: Dict[str, Any], source: str) -> Dict[str, List[str]]:
    parsed = {}
    for entity, fields in section.items():
        if fields is None:
            continue
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            _warn_malformed(
                "Ignoring visible_fields entry: expected a list of field names",
                source,
                entity=entity
            )
            continue
        parsed[str(entity)] = list(fields)
    return parsed


def _parse_permissions(section: Dict[str, Any]) -> Dict[str, bool]:
    # Only a literal true grants a permission.
    return {
        str(permission_id): value is True
        for permission_id, value in section.items()
        if value is not None
    }


def _parse_limits(section: Dict[str, Any], source: str) -> Dict[str, Number]:
    parsed = {}
    for name, value in section.items():
        if value is None:
            continue
        if not _is_number(value):
            _warn_malformed(
                "Ignoring non-numeric limit",
                source,
                limit_name=name,
                value=repr(value)
            )
            continue
        parsed[str(name)] = value
    return parsed


def _split_top_level(data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    flags: Dict[str, Any] = {}
    extras: Dict[str, Any] = {}
    for key, value in data.items():
        if key in SECTION_KEYS or value is None:
            continue
        if isinstance(value, bool) or _is_number(value):
            flags[str(key)] = value
        else:
            extras[str(key)] = deepcopy(value)
    return flags, extras


def parse_features_document(raw: RawDocument, source: str = "features") -> FeaturesDocument:
    """
    Parse a features document leniently.

    Args:
        raw: JSON text, decoded dict, None or an existing FeaturesDocument
        source: Label used in log records (e.g. "plan:<id>")

    Returns:
        FeaturesDocument. Malformed input yields an empty document;
        malformed entries are dropped individually.
    """
    if isinstance(raw, FeaturesDocument):
        return raw

    data = _decode(raw, source)
    if data is None:
        return FeaturesDocument()

    flags, extras = _split_top_level(data)
    return FeaturesDocument(
        flags=flags,
        page_access=_parse_page_access(_section(data, "page_access", source), source),
        visible_fields=_parse_visible_fields(_section(data, "visible_fields", source), source),
        permissions=_parse_permissions(_section(data, "permissions", source)),
        limits=_parse_limits(_section(data, "limits", source), source),
        extras=extras,
    )


def decode_document(raw: Union[None, str, bytes, Dict[str, Any]], source: str = "document") -> Dict[str, Any]:
    """Decode a stored JSON document into a dict; absent or malformed -> {}."""
    return _decode(raw, source) or {}


def parse_limits_document(raw: Union[None, str, bytes, Dict[str, Any]], source: str = "limits") -> Dict[str, Number]:
    """Parse a standalone limits document ({name: number}) leniently."""
    data = _decode(raw, source)
    if data is None:
        return {}
    return _parse_limits(data, source)


# ---------------------------------------------------------------------------
# Strict validation for admin writes
# ---------------------------------------------------------------------------

def _strict_decode(raw: Any, errors: List[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            errors.append("Document is not valid UTF-8")
            return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            errors.append(f"Document is not valid JSON: {e.msg}")
            return None
    if not isinstance(raw, dict):
        errors.append("Document must be a JSON object")
        return None
    return raw


def _validate_limit_values(limits: Dict[str, Any], prefix: str, errors: List[str]) -> None:
    for name, value in limits.items():
        if value is None:
            continue
        if not _is_number(value) or (value < 0 and value != UNLIMITED):
            errors.append(f"{prefix}{name} must be -1 (unlimited) or a non-negative number")


def validate_features_document(raw: Any) -> ValidationResult:
    """
    Validate a features document for storage.

    Rules: top level is an object; page_access values are view, edit or
    none; visible_fields map entities to lists of strings; permissions are
    booleans; limits are -1 or non-negative numbers.

    Returns:
        ValidationResult with every problem found
    """
    errors: List[str] = []
    data = _strict_decode(raw, errors)
    if data is None:
        return ValidationResult(valid=not errors, errors=errors)

    for key in SECTION_KEYS:
        value = data.get(key)
        if value is not None and not isinstance(value, dict):
            errors.append(f"{key} must be an object")

    page_access = data.get("page_access")
    if isinstance(page_access, dict):
        for page_id, level in page_access.items():
            if level is not None and not (isinstance(level, str) and level in _PAGE_LEVELS):
                errors.append(
                    f"Invalid access level for page {page_id}: {level!r} "
                    f"(expected one of none, view, edit)"
                )

    visible_fields = data.get("visible_fields")
    if isinstance(visible_fields, dict):
        for entity, fields in visible_fields.items():
            if fields is None:
                continue
            if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
                errors.append(f"visible_fields.{entity} must be a list of field names")

    permissions = data.get("permissions")
    if isinstance(permissions, dict):
        for permission_id, value in permissions.items():
            if value is not None and not isinstance(value, bool):
                errors.append(f"permissions.{permission_id} must be true or false")

    limits = data.get("limits")
    if isinstance(limits, dict):
        _validate_limit_values(limits, "limits.", errors)

    return ValidationResult(valid=not errors, errors=errors)


def validate_limits_document(raw: Any) -> ValidationResult:
    """Validate a standalone limits document ({name: number})."""
    errors: List[str] = []
    data = _strict_decode(raw, errors)
    if data is not None:
        _validate_limit_values(data, "", errors)
    return ValidationResult(valid=not errors, errors=errors)
