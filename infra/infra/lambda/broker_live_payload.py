"""
Broker live state payload - converts the loosely-typed JSON sent by the sync
process into a typed BrokerLiveState record.

Required identifiers are rejected when missing; every other field falls back
to a default (null numbers, "syncing" status, empty objects).
"""
import math
from dataclasses import dataclass, field
from typing import Any, Optional

STATUSES = ("live", "syncing", "error", "stale")
DEFAULT_STATUS = "syncing"
REQUIRED_FIELDS = ["user_id", "broker", "account_id"]

# Range boto3 serializes for a DynamoDB number (38 significant digits max)
MIN_MAGNITUDE = 1e-128
MAX_MAGNITUDE = 1e126
MAX_INT_MAGNITUDE = 10 ** 38


@dataclass(frozen=True)
class BrokerLiveState:
    user_id: str
    broker: str
    account_id: str
    status: str = DEFAULT_STATUS
    equity: Optional[float] = None
    balance: Optional[float] = None
    floating_pnl: Optional[float] = None
    open_positions_count: Optional[int] = None
    margin_used: Optional[float] = None
    free_margin: Optional[float] = None
    exposure: dict = field(default_factory=dict)
    meta: dict = field(default_factory=dict)


class MissingFieldsError(ValueError):
    """Raised when user_id, broker or account_id is missing or blank."""

    def __init__(self):
        super().__init__(f"Missing required fields: {', '.join(REQUIRED_FIELDS)}")
        self.required = list(REQUIRED_FIELDS)


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def to_non_empty_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s or None


def to_number_or_none(value: Any) -> Optional[float]:
    """
    Accept finite numbers and numeric strings.
    bool is an int subclass in Python, so it is excluded explicitly.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _storable(float(value))
        except OverflowError:
            return None
    if isinstance(value, str):
        s = value.strip()
        # float() accepts "1_000"; a plain decimal literal is expected here.
        # Blank is null, unlike JavaScript's Number("") == 0.
        if not s or "_" in s:
            return None
        try:
            return _storable(float(s))
        except ValueError:
            return None
    return None


def _storable(n: float) -> Optional[float]:
    """Finite and inside the range a DynamoDB number can hold, else None."""
    if not math.isfinite(n):
        return None
    if n != 0 and not MIN_MAGNITUDE <= abs(n) < MAX_MAGNITUDE:
        return None
    return n


def to_int_or_none(value: Any) -> Optional[int]:
    n = to_number_or_none(value)
    if n is None:
        return None
    i = math.trunc(n)
    return i if abs(i) < MAX_INT_MAGNITUDE else None


def to_status(value: Any) -> str:
    if isinstance(value, str) and value.strip() in STATUSES:
        return value.strip()
    return DEFAULT_STATUS


def parse_payload(body: Any) -> BrokerLiveState:
    """
    Build a BrokerLiveState from a decoded JSON body.

    Raises MissingFieldsError if any identifier is missing. A body that is
    not a JSON object has no fields at all.
    """
    if not _is_object(body):
        body = {}

    user_id = to_non_empty_string(body.get("user_id"))
    broker = to_non_empty_string(body.get("broker"))
    account_id = to_non_empty_string(body.get("account_id"))
    if not user_id or not broker or not account_id:
        raise MissingFieldsError()

    metrics = body.get("metrics")
    if not _is_object(metrics):
        metrics = {}

    exposure = body.get("exposure")
    meta = body.get("meta")

    return BrokerLiveState(
        user_id=user_id,
        broker=broker,
        account_id=account_id,
        status=to_status(body.get("status")),
        equity=to_number_or_none(metrics.get("equity")),
        balance=to_number_or_none(metrics.get("balance")),
        floating_pnl=to_number_or_none(metrics.get("floating_pnl")),
        open_positions_count=to_int_or_none(metrics.get("open_positions_count")),
        margin_used=to_number_or_none(metrics.get("margin_used")),
        free_margin=to_number_or_none(metrics.get("free_margin")),
        exposure=exposure if _is_object(exposure) else {},
        meta=meta if _is_object(meta) else {},
    )
