"""Slot progress codec.

Stored progress is a sparse ``{"<slot>": <bubbles>}`` JSON object. Older
writers double- or triple-encoded it and some rows hold garbage, so reads
unwrap up to three string layers and repair what they find. Writes always
emit exactly one layer with integer values.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

import structlog

from bubbles.errors import DataIntegrityRecovered
from bubbles.ledger.constants import MAX_DECODE_PASSES, SLOT_CAPACITY, SLOT_KEY_SKEW

logger = structlog.get_logger()


@dataclass(frozen=True)
class SlotProgressInspection:
    """Result of reading stored progress: the usable map plus what was repaired."""

    progress: dict[int, int]
    recovered: bool = False
    reason: str | None = None


_EMPTY = SlotProgressInspection(progress={})


def _unwrap(raw: Any) -> tuple[Any, str | None]:  # noqa: ANN401
    """Peel string layers off ``raw``. Returns (value, failure_reason)."""
    value = raw
    for _ in range(MAX_DECODE_PASSES):
        if isinstance(value, (bytes, bytearray)):
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError:
                return None, "undecodable_bytes"
        if not isinstance(value, str):
            break
        if not value.strip():
            return None, None
        try:
            value = json.loads(value)
        except ValueError:
            return None, "unparseable"
    if isinstance(value, (str, bytes, bytearray)):
        return None, "too_many_encoding_layers"
    return value, None


def _coerce_value(value: Any) -> int:  # noqa: ANN401
    """Coerce one stored value to bubbles, 0 when unusable."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return 0
        number = math.floor(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                parsed = float(text)
            except ValueError:
                return 0
            if not math.isfinite(parsed):
                return 0
            number = math.floor(parsed)
    else:
        return 0
    if number < 0 or number > SLOT_CAPACITY:
        return 0
    return number


def _coerce_key(key: Any) -> int | None:  # noqa: ANN401
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.strip().lstrip("-").isdigit():
        return int(key.strip())
    return None


def _is_corrupt(mapping: dict[Any, Any], slot_count: int) -> bool:
    if len(mapping) > slot_count + SLOT_KEY_SKEW:
        return True
    return any(
        isinstance(v, str) and len(v) == 1 and not v.isdigit()
        for v in mapping.values()
    )


def inspect_slot_progress(raw: Any, slot_count: int) -> SlotProgressInspection:  # noqa: ANN401
    """Decode stored progress and report whether it had to be repaired.

    Never raises. Slots outside ``1..slot_count`` and zero values are
    dropped from the result.
    """
    if raw is None:
        return _EMPTY

    value, failure = _unwrap(raw)
    if failure is not None:
        return SlotProgressInspection(progress={}, recovered=True, reason=failure)
    if value is None:
        return _EMPTY
    if not isinstance(value, dict):
        return SlotProgressInspection(progress={}, recovered=True, reason="not_an_object")
    if _is_corrupt(value, slot_count):
        return SlotProgressInspection(progress={}, recovered=True, reason="corrupt_entries")

    progress: dict[int, int] = {}
    for key, stored in value.items():
        slot = _coerce_key(key)
        if slot is None or slot < 1 or slot > slot_count:
            continue
        bubbles = _coerce_value(stored)
        if bubbles:
            progress[slot] = bubbles
    return SlotProgressInspection(progress=progress)


def decode_slot_progress(
    raw: Any,  # noqa: ANN401
    slot_count: int,
    *,
    account_id: int | None = None,
) -> dict[int, int]:
    """Decode stored progress into ``{slot: bubbles}``, logging any recovery."""
    inspection = inspect_slot_progress(raw, slot_count)
    if inspection.recovered:
        logger.warning(
            "data_integrity_recovered",
            signal=DataIntegrityRecovered.__name__,
            account_id=account_id,
            reason=inspection.reason,
            slot_count=slot_count,
        )
    return inspection.progress


def encode_slot_progress(progress: dict[int, int] | str) -> str:
    """Serialize progress as a single JSON layer, numeric key order, zeros omitted.

    An already-encoded string is unwrapped first so repeated encoding
    never stacks layers.
    """
    if isinstance(progress, str):
        value, _ = _unwrap(progress)
        progress = value if isinstance(value, dict) else {}

    cleaned: dict[int, int] = {}
    for key, stored in progress.items():
        slot = _coerce_key(key)
        if slot is None or slot < 1:
            msg = f"Invalid slot index: {key!r}"
            raise ValueError(msg)
        bubbles = _coerce_value(stored)
        if bubbles:
            cleaned[slot] = bubbles
    return json.dumps({str(slot): cleaned[slot] for slot in sorted(cleaned)})
