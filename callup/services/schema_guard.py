from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "trainings": {"id", "batch_id", "training_date", "start_time", "end_time", "counts_toward_hours"},
    "training_compensations": {"training_id", "training_hours", "is_weekend", "daily_rate", "override_rate"},
    "payment_processes": {"batch_id", "status", "doc_approved_at", "cms_draft_at", "cms_approved_at"},
    "refund_processes": {"batch_id", "status", "refund_requested_at", "deposit_confirmed_at", "refund_completed_at"},
    "user_transport_allowances": {"user_id", "batch_id", "amount"},
    "gps_locations": {"latitude", "longitude", "radius_m", "is_active"},
    "commuting_records": {"user_id", "day_date", "check_in_at", "check_out_at", "is_manual"},
}

# Upsert conflict targets; without these ON CONFLICT fails at runtime.
REQUIRED_UNIQUE_COLUMNS: dict[str, list[set[str]]] = {
    "training_compensations": [{"training_id"}],
    "payment_processes": [{"batch_id"}],
    "refund_processes": [{"batch_id"}],
    "user_transport_allowances": [{"user_id", "batch_id"}],
    "commuting_records": [{"user_id", "day_date"}],
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "payment_status": {"DOC_DRAFT", "DOC_APPROVED", "CMS_DRAFT", "CMS_APPROVED"},
    "refund_status": {"REFUND_REQUESTED", "DEPOSIT_CONFIRMED", "REFUND_COMPLETED"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, required_sets in REQUIRED_UNIQUE_COLUMNS.items():
        try:
            constraints = inspector.get_unique_constraints(table_name) or []
            indexes = inspector.get_indexes(table_name) or []
        except Exception as exc:
            issues.append(f"CONSTRAINTS_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        unique_sets = [set(item.get("column_names") or []) for item in constraints]
        unique_sets.extend(set(item.get("column_names") or []) for item in indexes if item.get("unique"))
        for required in required_sets:
            if required not in unique_sets:
                issues.append(f"MISSING_UNIQUE:{table_name}:{','.join(sorted(required))}")

    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
