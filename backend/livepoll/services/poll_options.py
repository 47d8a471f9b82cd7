"""
Decoding of poll option payloads.

Rows coming back from the backend carry `options` as a native list, a
JSON-encoded string or a key->value map depending on which writer produced
them. Every call site goes through `decode_options`.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

FALLBACK_OPTIONS: tuple = ("Option 1", "Option 2")


class OptionsDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class DecodedOptions:
    options: List[str]
    fallback: bool = False
    error: Optional[str] = None


def _scalar_label(value: Any) -> str:
    if isinstance(value, (dict, list, tuple, set)) or value is None:
        raise OptionsDecodeError(f"unsupported option value: {value!r}")
    return str(value).strip()


def _map_key(key: Any) -> Optional[int]:
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


def _from_mapping(value: dict) -> List[str]:
    keys = list(value.keys())
    ordered = [_map_key(k) for k in keys]
    if all(k is not None for k in ordered):
        pairs = sorted(zip(ordered, keys), key=lambda item: item[0])
        keys = [k for _, k in pairs]
    return [_scalar_label(value[k]) for k in keys]


def _decode_strict(raw: Any) -> List[str]:
    value = raw
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise OptionsDecodeError(f"options string is not valid JSON: {exc}") from exc
    if isinstance(value, (list, tuple)):
        options = [_scalar_label(item) for item in value]
    elif isinstance(value, dict):
        options = _from_mapping(value)
    else:
        raise OptionsDecodeError(f"unsupported options payload type: {type(value).__name__}")
    if len(options) < 2:
        raise OptionsDecodeError(f"expected at least 2 options, got {len(options)}")
    if any(not label for label in options):
        raise OptionsDecodeError("options contain an empty label")
    return options


def decode_options(raw: Any, *, poll_id: Optional[str] = None) -> DecodedOptions:
    """Decode any supported options representation; never raises."""
    try:
        return DecodedOptions(options=_decode_strict(raw))
    except OptionsDecodeError as exc:
        logger.error("poll_options_decode_failed poll_id=%s err=%s", poll_id, exc)
        return DecodedOptions(options=list(FALLBACK_OPTIONS), fallback=True, error=str(exc))
