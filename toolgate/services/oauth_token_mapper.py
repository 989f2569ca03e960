"""Normalize non-standard OAuth token responses into TokenRecord."""

import logging
import time
from typing import Any, Dict, Optional, Union

from toolgate.infra.errors import ConfigurationError, TokenMappingError
from toolgate.models.token import TokenRecord, TokenResponseMapping

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = ("token_type", "scope", "expires_in", "refresh_token")


def get_nested_value(obj: Any, path: str) -> Any:
    """
    Read a value from nested dicts using a dot-separated path.

    Args:
        obj: Object to read from
        path: Dot notation path (e.g. "authed_user.access_token")

    Returns:
        The value at the path, or None if any segment is missing
    """
    current = obj
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _coerce_seconds(value: Any, path: str) -> Union[int, float]:
    if isinstance(value, bool):
        raise ConfigurationError(f"Token response field at '{path}' is not a number of seconds")
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Token response field at '{path}' is not a number of seconds: {value!r}")
    return int(number) if number.is_integer() else number


def map_token_response(
    response: Dict[str, Any],
    mapping: Union[TokenResponseMapping, Dict[str, Any]],
    obtained_at: Optional[int] = None,
) -> TokenRecord:
    """
    Map a provider token response onto the canonical TokenRecord.

    access_token must resolve at its mapped path. Optional fields use their
    mapped path when one is given, otherwise the top-level field of the same
    name. token_type defaults to "Bearer"; expires_at is derived only when
    expires_in is truthy.

    Args:
        response: Raw token response from the OAuth server
        mapping: Paths to token fields
        obtained_at: Capture time in epoch ms (defaults to now)

    Returns:
        Immutable TokenRecord

    Raises:
        TokenMappingError: If access_token is not found at the mapped path
    """
    if not isinstance(mapping, TokenResponseMapping):
        mapping = TokenResponseMapping.model_validate(mapping)

    access_token = get_nested_value(response, mapping.access_token)
    if not access_token:
        response_keys = list(response.keys()) if isinstance(response, dict) else []
        logger.error(
            f'[OAuth] Token response mapping failed: access_token not found at path "{mapping.access_token}"',
            extra={"response_keys": response_keys},
        )
        raise TokenMappingError(mapping.access_token, response_keys)

    values: Dict[str, Any] = {}
    for name in OPTIONAL_FIELDS:
        path = getattr(mapping, name)
        values[name] = get_nested_value(response, path) if path else response.get(name)

    now = obtained_at if obtained_at is not None else int(time.time() * 1000)
    record: Dict[str, Any] = {
        "access_token": str(access_token),
        "token_type": values["token_type"] or "Bearer",
        "obtained_at": now,
    }

    if values["scope"]:
        record["scope"] = values["scope"]
    if values["expires_in"]:
        expires_in = _coerce_seconds(values["expires_in"], mapping.expires_in or "expires_in")
        record["expires_in"] = expires_in
        record["expires_at"] = now + expires_in * 1000
    if values["refresh_token"]:
        record["refresh_token"] = values["refresh_token"]

    logger.debug(
        "[OAuth] Token response mapped successfully",
        extra={
            "has_refresh_token": "refresh_token" in record,
            "has_scope": "scope" in record,
            "has_expires_in": "expires_in" in record,
            "token_type": record["token_type"],
        },
    )
    return TokenRecord(**record)
