"""Schema normalization for upstream CRM rows.

Upstream data mixes snake_case, camelCase and legacy column spellings
(``SalesAgentID``, ``amount_paid``, ``amountPaid``, ``monthlyTarget`` ...).
Every row is mapped onto a canonical record here, once, right after fetch;
nothing downstream looks at alias spellings.

Defines:
- DEAL_FIELD_MAP, CALLBACK_FIELD_MAP, TARGET_FIELD_MAP, USER_FIELD_MAP,
  NOTIFICATION_FIELD_MAP: canonical field -> ordered aliases and value type.
- safe_number(): zero-on-failure numeric coercion.
- parse_timestamp(): tolerant timestamp parsing to aware UTC datetimes.
- normalize_deal() ... normalize_notification(), normalize_records().
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from src.app.analytics.schemas import (
    Callback,
    Deal,
    EntityType,
    Notification,
    Target,
    UserRecord,
)

logger = structlog.get_logger(__name__)

# Epoch values above this are taken to be milliseconds.
_EPOCH_MS_THRESHOLD = 100_000_000_000

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "y", "on"})


# ── Field Maps ──────────────────────────────────────────────────────────────
# Aliases are tried in order; the first present, non-empty value wins.

DEAL_FIELD_MAP: dict[str, dict[str, Any]] = {
    "id": {"aliases": ("id", "_id"), "type": "str"},
    "deal_id": {"aliases": ("deal_id", "DealID", "dealId", "dealID"), "type": "str"},
    "customer_name": {"aliases": ("customer_name", "customerName", "customer"), "type": "str"},
    "customer_email": {"aliases": ("customer_email", "customerEmail", "email"), "type": "str"},
    "customer_phone": {
        "aliases": ("customer_phone", "customerPhone", "phone_number", "phoneNumber", "phone"),
        "type": "str",
    },
    "amount": {
        "aliases": ("amount", "amount_paid", "amountPaid", "totalAmount", "total_amount"),
        "type": "amount",
    },
    "sales_agent_id": {
        "aliases": ("sales_agent_id", "SalesAgentID", "salesAgentId", "salesAgentID"),
        "type": "str",
    },
    "sales_agent_name": {
        "aliases": ("sales_agent_name", "salesAgentName", "sales_agent", "salesAgent"),
        "type": "str",
    },
    "closing_agent_id": {
        "aliases": ("closing_agent_id", "ClosingAgentID", "closingAgentId", "closingAgentID"),
        "type": "str",
    },
    "closing_agent_name": {
        "aliases": ("closing_agent_name", "closingAgentName", "closing_agent", "closingAgent"),
        "type": "str",
    },
    "team": {"aliases": ("team", "sales_team", "salesTeam", "teamName"), "type": "str"},
    "service_tier": {"aliases": ("service_tier", "serviceTier", "service"), "type": "str"},
    "program_type": {
        "aliases": ("program_type", "programType", "product_type", "productType"),
        "type": "str",
    },
    "duration_months": {"aliases": ("duration_months", "durationMonths", "duration"), "type": "int"},
    "signup_date": {"aliases": ("signup_date", "signupDate"), "type": "date"},
    "created_at": {"aliases": ("created_at", "createdAt", "timestamp"), "type": "datetime"},
    "updated_at": {"aliases": ("updated_at", "updatedAt"), "type": "datetime"},
    "status": {"aliases": ("status",), "type": "str"},
    "stage": {"aliases": ("stage",), "type": "str"},
}

CALLBACK_FIELD_MAP: dict[str, dict[str, Any]] = {
    "id": {"aliases": ("id", "_id"), "type": "str"},
    "customer_name": {"aliases": ("customer_name", "customerName"), "type": "str"},
    "customer_phone": {
        "aliases": ("customer_phone", "customerPhone", "phone_number", "phoneNumber", "phone"),
        "type": "str",
    },
    "customer_email": {"aliases": ("customer_email", "customerEmail", "email"), "type": "str"},
    "sales_agent_id": {
        "aliases": ("sales_agent_id", "SalesAgentID", "salesAgentId", "salesAgentID"),
        "type": "str",
    },
    "sales_agent_name": {
        "aliases": ("sales_agent_name", "salesAgentName", "sales_agent", "salesAgent"),
        "type": "str",
    },
    "team": {"aliases": ("team", "sales_team", "salesTeam", "teamName"), "type": "str"},
    "scheduled_date": {
        "aliases": ("scheduled_date", "scheduledDate", "first_call_date", "firstCallDate"),
        "type": "date",
    },
    "scheduled_time": {
        "aliases": ("scheduled_time", "scheduledTime", "first_call_time", "firstCallTime"),
        "type": "str",
    },
    "reason": {"aliases": ("reason", "callback_reason", "callbackReason"), "type": "str"},
    "notes": {"aliases": ("notes", "callback_notes", "callbackNotes"), "type": "str"},
    "status": {"aliases": ("status",), "type": "status"},
    "converted_to_deal": {"aliases": ("converted_to_deal", "convertedToDeal"), "type": "bool"},
    "deal_id": {"aliases": ("deal_id", "dealId"), "type": "str"},
    "created_by_id": {"aliases": ("created_by_id", "createdById", "createdByID"), "type": "str"},
    "created_by_name": {
        "aliases": ("created_by_name", "createdByName", "created_by", "createdBy"),
        "type": "str",
    },
    "created_at": {"aliases": ("created_at", "createdAt", "timestamp"), "type": "datetime"},
    "updated_at": {"aliases": ("updated_at", "updatedAt"), "type": "datetime"},
}

TARGET_FIELD_MAP: dict[str, dict[str, Any]] = {
    "id": {"aliases": ("id", "_id"), "type": "str"},
    "agent_id": {"aliases": ("agent_id", "agentId", "agentID", "SalesAgentID"), "type": "str"},
    "agent_name": {"aliases": ("agent_name", "agentName"), "type": "str"},
    "manager_id": {"aliases": ("manager_id", "managerId", "managerID"), "type": "str"},
    "manager_name": {"aliases": ("manager_name", "managerName"), "type": "str"},
    "team": {"aliases": ("team", "sales_team", "salesTeam", "teamName"), "type": "str"},
    "period": {"aliases": ("period",), "type": "str"},
    "target_amount": {
        "aliases": ("target_amount", "targetAmount", "monthlyTarget", "monthly_target"),
        "type": "amount",
    },
    "target_deals": {"aliases": ("target_deals", "targetDeals", "dealsTarget", "deals_target"), "type": "int"},
    "current_amount": {
        "aliases": ("current_amount", "currentAmount", "currentSales", "current_sales"),
        "type": "amount",
    },
    "current_deals": {"aliases": ("current_deals", "currentDeals"), "type": "int"},
    "type": {"aliases": ("type",), "type": "str"},
    "description": {"aliases": ("description",), "type": "str"},
    "created_at": {"aliases": ("created_at", "createdAt"), "type": "datetime"},
    "updated_at": {"aliases": ("updated_at", "updatedAt"), "type": "datetime"},
}

USER_FIELD_MAP: dict[str, dict[str, Any]] = {
    "id": {"aliases": ("id", "_id", "uid"), "type": "str"},
    "username": {"aliases": ("username", "userName"), "type": "str"},
    "name": {"aliases": ("name", "full_name", "fullName", "displayName"), "type": "str"},
    "email": {"aliases": ("email",), "type": "str"},
    "role": {"aliases": ("role",), "type": "str"},
    "team": {"aliases": ("team", "sales_team", "salesTeam"), "type": "str"},
    "managed_team": {"aliases": ("managed_team", "managedTeam"), "type": "str"},
    "created_at": {"aliases": ("created_at", "createdAt"), "type": "datetime"},
}

NOTIFICATION_FIELD_MAP: dict[str, dict[str, Any]] = {
    "id": {"aliases": ("id", "_id"), "type": "str"},
    "title": {"aliases": ("title",), "type": "str"},
    "message": {"aliases": ("message", "body"), "type": "str"},
    "type": {"aliases": ("type",), "type": "str"},
    "priority": {"aliases": ("priority",), "type": "str"},
    "sender": {"aliases": ("sender", "created_by", "createdBy", "from"), "type": "str"},
    "sender_name": {"aliases": ("sender_name", "senderName", "created_by_name", "createdByName"), "type": "str"},
    "recipients": {"aliases": ("recipients", "to", "target_users", "targetUsers"), "type": "list"},
    "read_by": {"aliases": ("read_by", "readBy"), "type": "list"},
    "is_read": {"aliases": ("is_read", "isRead", "read"), "type": "bool"},
    "deal_id": {"aliases": ("deal_id", "dealId"), "type": "str"},
    "callback_id": {"aliases": ("callback_id", "callbackId"), "type": "str"},
    "target_id": {"aliases": ("target_id", "targetId"), "type": "str"},
    "sales_agent_id": {"aliases": ("sales_agent_id", "salesAgentId", "SalesAgentID"), "type": "str"},
    "team": {"aliases": ("team", "sales_team", "salesTeam"), "type": "str"},
    "created_at": {"aliases": ("created_at", "createdAt", "timestamp"), "type": "datetime"},
}


# ── Value Coercion ──────────────────────────────────────────────────────────


def safe_number(value: Any, default: float = 0.0) -> float:
    """Coerce ``value`` to a finite float, returning ``default`` on any failure.

    Accepts ints, floats, Decimals and numeric strings (surrounding
    whitespace, thousands separators and a leading currency sign are
    tolerated). Booleans, None, NaN and infinities yield ``default``.
    Never raises.
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return default
    elif isinstance(value, str):
        text = value.strip().replace(",", "").lstrip("$€£").strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            return default
    else:
        return default

    if math.isnan(number) or math.isinf(number):
        return default
    return number


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ``value`` into an aware UTC datetime, or None if it is not one.

    Handles datetime/date objects, ISO-8601 and ``YYYY-MM-DD HH:MM:SS``
    strings, epoch seconds or milliseconds, and document-store timestamp
    mappings carrying ``seconds``/``_seconds``. Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = safe_number(value.get("nanoseconds", value.get("_nanoseconds")))
        return _from_epoch(safe_number(seconds, default=math.nan) + nanos / 1e9)

    if isinstance(value, (int, float, Decimal)):
        return _from_epoch(float(value))

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").replace(".", "", 1).isdigit():
            return _from_epoch(float(text))
        return _parse_timestamp_string(text)

    return None


def _from_epoch(seconds: float) -> datetime | None:
    if math.isnan(seconds) or math.isinf(seconds):
        return None
    if abs(seconds) >= _EPOCH_MS_THRESHOLD:
        seconds = seconds / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_timestamp_string(text: str) -> datetime | None:
    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return parse_timestamp(datetime.fromisoformat(iso))
    except ValueError:
        pass
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    text = str(value).strip()
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                return []
        else:
            return [part.strip() for part in text.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _coerce(value: Any, kind: str) -> Any:
    if kind == "str":
        return _as_str(value)
    if kind == "amount":
        return max(0.0, safe_number(value))
    if kind == "int":
        return int(safe_number(value))
    if kind == "datetime":
        return parse_timestamp(value)
    if kind == "date":
        parsed = parse_timestamp(value)
        return parsed.date() if parsed is not None else None
    if kind == "bool":
        return _as_bool(value)
    if kind == "list":
        return _as_list(value)
    if kind == "status":
        return (_as_str(value) or "pending").lower()
    raise ValueError(f"Unknown field type: {kind}")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _map_fields(row: Mapping[str, Any], field_map: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Collapse alias spellings in ``row`` to canonical, coerced values."""
    mapped: dict[str, Any] = {}
    for field, rule in field_map.items():
        for alias in rule["aliases"]:
            value = row.get(alias)
            if not _present(value):
                continue
            coerced = _coerce(value, rule["type"])
            if coerced is not None:
                mapped[field] = coerced
                break
    return mapped


# ── Normalizers ─────────────────────────────────────────────────────────────


def normalize_deal(row: Mapping[str, Any]) -> Deal:
    return Deal.model_validate(_map_fields(row, DEAL_FIELD_MAP))


def normalize_callback(row: Mapping[str, Any]) -> Callback:
    return Callback.model_validate(_map_fields(row, CALLBACK_FIELD_MAP))


def normalize_target(row: Mapping[str, Any]) -> Target:
    return Target.model_validate(_map_fields(row, TARGET_FIELD_MAP))


def normalize_user(row: Mapping[str, Any]) -> UserRecord:
    return UserRecord.model_validate(_map_fields(row, USER_FIELD_MAP))


def normalize_notification(row: Mapping[str, Any]) -> Notification:
    return Notification.model_validate(_map_fields(row, NOTIFICATION_FIELD_MAP))


_NORMALIZERS = {
    EntityType.DEALS.value: normalize_deal,
    EntityType.CALLBACKS.value: normalize_callback,
    EntityType.TARGETS.value: normalize_target,
    EntityType.USERS.value: normalize_user,
    EntityType.NOTIFICATIONS.value: normalize_notification,
}


def normalize_records(entity: str, rows: Iterable[Any]) -> list[BaseModel]:
    """Normalize every row of ``entity``, skipping rows that cannot be mapped.

    Rows that are not mappings, or that fail validation (for example a user
    without an id), are dropped with a warning instead of failing the batch.
    """
    normalizer = _NORMALIZERS.get(str(getattr(entity, "value", entity)))
    if normalizer is None:
        raise ValueError(f"Unknown entity type: {entity}")

    records: list[BaseModel] = []
    skipped = 0
    for row in rows:
        if isinstance(row, BaseModel):
            row = row.model_dump()
        if not isinstance(row, Mapping):
            skipped += 1
            continue
        try:
            records.append(normalizer(row))
        except ValidationError as exc:
            skipped += 1
            logger.warning(
                "analytics.normalize_skipped",
                entity=str(entity),
                row_id=row.get("id"),
                errors=exc.error_count(),
            )

    if skipped:
        logger.info("analytics.normalize_summary", entity=str(entity), kept=len(records), skipped=skipped)
    return records
