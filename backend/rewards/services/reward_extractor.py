from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from rewards.core.errors import MalformedData
from rewards.core.types import RawRewardSnapshot, RewardRecord

COEFFICIENT_FIELDS = ("max_reward_rate", "kp_gain", "kd_gain")

# Token amounts are 256-bit unsigned on chain: at most 78 decimal digits.
MAX_DIGITS = 78
_INT_LIMIT = 10**MAX_DIGITS


def _bounded_decimal(text: str, field_name: str, token: str) -> Decimal:
    try:
        parsed = Decimal(text)
    except InvalidOperation as exc:
        raise MalformedData(f"{token}: {field_name}={text[:40]!r} is not a decimal") from exc
    if not parsed.is_finite():
        raise MalformedData(f"{token}: {field_name}={text[:40]!r} is not finite")
    # checked before any int conversion so "1E+999999999" never expands
    if parsed and (parsed.adjusted() >= MAX_DIGITS or parsed.as_tuple().exponent < -MAX_DIGITS):
        raise MalformedData(f"{token}: {field_name} exceeds {MAX_DIGITS} digits")
    return parsed


def _check_int(value: int, field_name: str, token: str) -> None:
    if not -_INT_LIMIT < value < _INT_LIMIT:
        raise MalformedData(f"{token}: {field_name} exceeds {MAX_DIGITS} digits")


def _parse_decimal(value: Any, field_name: str, token: str) -> str:
    # bool is an int subclass; floats would already have lost precision
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedData(f"{token}: {field_name} must be a decimal string, got {type(value).__name__}")
    if isinstance(value, int):
        _check_int(value, field_name, token)
    text = str(value).strip()
    _bounded_decimal(text, field_name, token)
    return text


def _parse_amount(value: Any, token: str) -> str:
    """Return the amount as a canonical string of decimal digits."""
    if isinstance(value, bool):
        raise MalformedData(f"{token}: locked_amount_target must be an integer, got bool")
    if isinstance(value, int):
        _check_int(value, "locked_amount_target", token)
        amount = value
    elif isinstance(value, str):
        parsed = _bounded_decimal(value.strip(), "locked_amount_target", token)
        if parsed != parsed.to_integral_value():
            raise MalformedData(f"{token}: locked_amount_target={value!r} is not an integer")
        amount = int(parsed)
    else:
        raise MalformedData(
            f"{token}: locked_amount_target must be an integer, got {type(value).__name__}"
        )
    if amount < 0:
        raise MalformedData(f"{token}: locked_amount_target={value!r} is negative")
    return str(amount)


def _extract_entry(entry: Any) -> RewardRecord:
    if not isinstance(entry, Mapping):
        raise MalformedData(f"reward entry must be an object, got {type(entry).__name__}")
    token = entry.get("token", entry.get("address"))
    if not isinstance(token, str) or not token.strip():
        raise MalformedData(f"reward entry without token: {dict(entry)!r}")
    token = token.strip()

    coefficients = {}
    for name in COEFFICIENT_FIELDS:
        if entry.get(name) is None:
            raise MalformedData(f"{token}: missing {name}")
        coefficients[name] = _parse_decimal(entry[name], name, token)

    if entry.get("locked_amount_target") is None:
        raise MalformedData(f"{token}: missing locked_amount_target")

    return RewardRecord(
        token=token,
        locked_amount_target=_parse_amount(entry["locked_amount_target"], token),
        **coefficients,
    )


def extract(raw: RawRewardSnapshot) -> list[RewardRecord]:
    """Turn a raw node snapshot into reward records, sorted by token.

    Raises MalformedData for the whole snapshot as soon as one entry cannot be
    represented exactly; nothing is coerced through floating point.
    """
    if not isinstance(raw.entries, list):
        raise MalformedData(f"epoch {raw.epoch}: reward entries must be a list")

    records: dict[str, RewardRecord] = {}
    for entry in raw.entries:
        record = _extract_entry(entry)
        if record.token in records:
            raise MalformedData(f"epoch {raw.epoch}: token {record.token} listed twice")
        records[record.token] = record
    return [records[token] for token in sorted(records)]
