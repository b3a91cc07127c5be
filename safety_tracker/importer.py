# safety_tracker/importer.py
import csv
import io
import logging
import re
from typing import Dict, List, Optional, Sequence, TypedDict

from sqlalchemy.orm import Session

from . import validation
from .errors import PreconditionError, ValidationError, get_or_404
from .incidents import create_incident
from .models import (
    Establishment, Location, OUTCOME_SEVERITY_LABELS, INJURY_TYPE_LABELS,
)

logger = logging.getLogger(__name__)

# Fields a CSV column can be mapped onto, in display order.
CANONICAL_FIELDS = (
    "employee_name",
    "employee_job_title",
    "incident_date",
    "description",
    "where_occurred",
    "location",
    "outcome_severity",
    "days_away_count",
    "days_restricted_count",
    "injury_illness_type",
    "employee_gender",
    "is_recordable",
)

REQUIRED_FIELDS = ("employee_name", "incident_date")

FIELD_LABELS = {
    "employee_name": "Employee name",
    "incident_date": "Incident date",
}

DEFAULT_DESCRIPTION = "Imported incident"
PREVIEW_ROWS = 5


class CsvPreview(TypedDict):
    headers: List[str]
    sample_rows: List[List[str]]
    total_rows: int


class ImportResult(TypedDict):
    imported: int
    errors: List[str]


class RowError(ValueError):
    pass


def parse_csv_text(text: str) -> Dict[str, list]:
    """Split CSV text into a header row and data rows (blank lines dropped)."""
    reader = csv.reader(io.StringIO(text))
    try:
        rows = [r for r in reader if any(cell.strip() for cell in r)]
    except csv.Error as e:
        raise ValidationError(f"Malformed CSV at line {reader.line_num}: {e}")
    if not rows:
        return {"headers": [], "rows": []}
    return {"headers": [h.strip() for h in rows[0]], "rows": rows[1:]}


def read_csv_file(path: str) -> Dict[str, list]:
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        try:
            text = f.read()
        except UnicodeDecodeError:
            raise ValidationError("CSV file is not UTF-8 encoded; re-save it as UTF-8 and retry")
    return parse_csv_text(text)


def preview_csv(path: str) -> CsvPreview:
    parsed = read_csv_file(path)
    return {
        "headers": parsed["headers"],
        "sample_rows": parsed["rows"][:PREVIEW_ROWS],
        "total_rows": len(parsed["rows"]),
    }


def _normalize_header(value: str) -> str:
    return re.sub(r"[_\s]", "", value.lower())


def auto_map_columns(headers: Sequence[str]) -> Dict[str, str]:
    """Guess a mapping by comparing normalized header and field names; first match wins."""
    mapping: Dict[str, str] = {}
    for field in CANONICAL_FIELDS:
        target = field.replace("_", "")
        for h in headers:
            if _normalize_header(h) == target:
                mapping[field] = h
                break
    return mapping


def _label_key(value: str) -> str:
    return re.sub(r"[\s\-/]+", "_", value.strip().lower())


def match_label(value: str, labels: Dict[str, str]) -> Optional[str]:
    """Resolve a cell to a classification key by key or display label, case-insensitively."""
    wanted = _label_key(value)
    for key, label in labels.items():
        if wanted == key or wanted == _label_key(label):
            return key
    return None


def _parse_days(value: str, field_name: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise RowError(f"{field_name} must be a whole number (got: {value})")


def _check_mapping(headers: Sequence[str], mapping: Dict[str, Optional[str]]) -> Dict[str, int]:
    unknown = [f for f in mapping if f not in CANONICAL_FIELDS]
    if unknown:
        raise PreconditionError(f"Unknown import field(s): {', '.join(sorted(unknown))}")

    header_index: Dict[str, int] = {}
    for i, h in enumerate(headers):
        header_index.setdefault(h, i)

    columns: Dict[str, int] = {}
    for field, header in mapping.items():
        if header and header in header_index:
            columns[field] = header_index[header]
        elif header:
            logger.warning("Mapped column %r for %s not present in file", header, field)

    missing = [FIELD_LABELS[f] for f in REQUIRED_FIELDS if f not in columns]
    if missing:
        raise PreconditionError(
            f"Required field(s) not mapped to a column: {', '.join(missing)}"
        )
    return columns


def build_incident_data(
    row: Sequence[str],
    columns: Dict[str, int],
    locations_by_name: Dict[str, int],
    default_location_id: Optional[int],
) -> dict:
    """Turn one CSV row into incident creation data, raising RowError on bad cells."""
    def get(field: str) -> str:
        idx = columns.get(field)
        if idx is None or idx >= len(row):
            return ""
        return row[idx].strip()

    employee_name = get("employee_name")
    if not employee_name:
        raise RowError("Missing employee name")

    raw_date = get("incident_date")
    if not raw_date:
        raise RowError("Missing incident date")
    parsed = validation.parse_date(raw_date)
    if not parsed:
        raise RowError(f"Invalid incident date '{raw_date}'")

    data = {
        "employee_name": employee_name,
        "incident_date": parsed.isoformat(),
        "description": get("description") or DEFAULT_DESCRIPTION,
        "employee_job_title": get("employee_job_title") or None,
        "where_occurred": get("where_occurred") or None,
        "employee_gender": get("employee_gender") or None,
        "location_id": default_location_id,
    }

    severity = get("outcome_severity")
    if severity:
        key = match_label(severity, OUTCOME_SEVERITY_LABELS)
        if key is None:
            raise RowError(f"Unrecognized severity '{severity}'")
        data["outcome_severity"] = key

    illness = get("injury_illness_type")
    if illness:
        key = match_label(illness, INJURY_TYPE_LABELS)
        if key is None:
            raise RowError(f"Unrecognized injury/illness type '{illness}'")
        data["injury_illness_type"] = key

    for field, name in (("days_away_count", "Days away"),
                        ("days_restricted_count", "Days restricted")):
        raw = get(field)
        if raw:
            data[field] = _parse_days(raw, name)

    recordable = get("is_recordable")
    if recordable:
        flag = validation.to_bool(recordable)
        if flag is None:
            raise RowError(f"Unrecognized recordable value '{recordable}'")
        data["is_recordable"] = flag

    location_name = get("location")
    if location_name:
        loc_id = locations_by_name.get(location_name.lower())
        if loc_id is None:
            raise RowError(f"Unknown location '{location_name}'")
        data["location_id"] = loc_id

    return data


def import_rows(
    db: Session,
    establishment_id: int,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    mapping: Dict[str, Optional[str]],
    default_location_id: Optional[int] = None,
) -> ImportResult:
    """Create one incident per parseable row; failed rows are reported, not fatal.

    Each successful row is committed on its own, so a later failure never
    undoes earlier imports. Re-importing the same rows creates new incidents.
    """
    columns = _check_mapping(headers, mapping)
    get_or_404(db, Establishment, establishment_id, "Establishment")

    locations = db.query(Location).filter(Location.establishment_id == establishment_id).all()
    if default_location_id is not None and default_location_id not in {loc.id for loc in locations}:
        raise PreconditionError(
            f"Location {default_location_id} does not belong to establishment {establishment_id}"
        )
    locations_by_name = {}
    for loc in locations:
        locations_by_name.setdefault(loc.name.lower(), loc.id)

    imported = 0
    errors: List[str] = []
    for row_num, row in enumerate(rows, start=1):
        try:
            data = build_incident_data(row, columns, locations_by_name, default_location_id)
            create_incident(db, establishment_id, data)
        except (RowError, ValidationError) as e:
            db.rollback()
            logger.warning("Import row %d rejected: %s", row_num, e)
            errors.append(f"Row {row_num}: {e}")
            continue
        imported += 1

    logger.info(
        "CSV import for establishment %s: %d imported, %d failed",
        establishment_id, imported, len(errors),
    )
    return {"imported": imported, "errors": errors}


def import_csv(
    db: Session,
    path: str,
    establishment_id: int,
    mapping: Dict[str, Optional[str]],
    default_location_id: Optional[int] = None,
) -> ImportResult:
    parsed = read_csv_file(path)
    return import_rows(
        db, establishment_id, parsed["headers"], parsed["rows"], mapping, default_location_id
    )
