"""
Deterministic Serialization and Checksums

Two runs over identical data must produce identical checksums, so the
serialization sorts keys, renders decimals canonically, and never depends
on insertion order.
"""

import dataclasses
import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum

from .money import Money


def _canonical_decimal(value: Decimal) -> str:
    # Decimal('0.020') and Decimal('0.02') are the same rate
    text = f"{value.normalize():f}"
    return "0" if text in ("-0", "0") else text


def to_primitive(value):
    """Reduce dataclasses, enums, decimals and dates to JSON primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Money):
        return _canonical_decimal(value.amount)
    if isinstance(value, Decimal):
        return _canonical_decimal(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_primitive(getattr(value, f.name)) for f in dataclasses.fields(value)}
        rule_type = getattr(type(value), "RULE_TYPE", None)
        if rule_type is not None:
            data["rule_type"] = rule_type
        return data
    if isinstance(value, dict):
        return {str(to_primitive(k)): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_primitive(v) for v in value]
    return value


def stable_dumps(value) -> str:
    return json.dumps(to_primitive(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def checksum(value) -> str:
    return sha256_hex(stable_dumps(value))
