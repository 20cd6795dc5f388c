from typing import List, Optional, Any, Sequence
import pandas as pd
import re
from datetime import datetime, date

from membership_import.models.errors import RowValidationError
from membership_import.models.mapping import MappedRow, ImportOptions
from membership_import.models.schema_def import ImportField, MEMBERSHIP
from membership_import.services.field_catalog import FieldCatalog

# Parsing helpers for dates, datetimes, booleans
DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y%m%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
]
DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y%m%d%H%M%S",
]

def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return bool(pd.isna(value))

def parse_date(value: Any, formats: Optional[Sequence[str]] = None) -> Optional[date]:
    """
    Public helper to parse dates from various string formats.
    Returns None if parsing fails or value is empty.
    """
    if is_empty(value):
        return None

    # Check if already a date object
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    value_str = str(value).strip()
    for fmt in formats or DATE_FORMATS:
        try:
            return datetime.strptime(value_str, fmt).date()
        except ValueError:
            continue
    return None

def parse_datetime(value: Any, formats: Optional[Sequence[str]] = None) -> Optional[datetime]:
    """
    Public helper to parse datetimes. Falls back to date-only if needed.
    """
    if is_empty(value):
        return None

    if isinstance(value, datetime):
        return value

    value_str = str(value).strip()
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value_str, fmt)
        except ValueError:
            continue

    # Try parsing as date and converting to datetime
    d = parse_date(value_str, formats)
    if d:
        return datetime(d.year, d.month, d.day)
    return None

def parse_bool(value: Any) -> Optional[bool]:
    """
    Public helper to parse boolean values.
    """
    if is_empty(value):
        return None
    if isinstance(value, bool):
        return value

    s = str(value).lower().strip()
    if s in ("true", "1", "t", "yes", "y", "on"):
        return True
    if s in ("false", "0", "f", "no", "n", "off"):
        return False
    return None

def parse_int(value: Any) -> Optional[int]:
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)

def parse_float(value: Any) -> Optional[float]:
    if is_empty(value) or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None

# VALIDATION LOGIC
#----------------------------------------------------------------
def get_invalid_values(
    value: Any,
    field: ImportField,
    date_formats: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Checks a single cell value against its field definition.
    Returns one message per violated constraint.
    """
    errors: List[str] = []
    if is_empty(value):
        return errors

    label = field.title or field.name

    # CASE 1: Numeric Fields (Integer/Float)
    if field.type in ("integer", "float"):
        converted = parse_int(value) if field.type == "integer" else parse_float(value)
        if converted is None:
            errors.append(label)
            return errors
        if field.min_value is not None and converted < field.min_value:
            errors.append(f"{label} (must be at least {field.min_value:g})")

    # CASE 2: Date/Datetime Fields
    elif field.type == "date":
        if parse_date(value, date_formats) is None:
            errors.append(label)
    elif field.type == "datetime":
        if parse_datetime(value, date_formats) is None:
            errors.append(label)

    # CASE 3: Boolean Fields
    elif field.type == "boolean":
        if parse_bool(value) is None:
            errors.append(label)

    # CASE 4: Allowed Values (Enums)
    if field.allowed_values and str(value) not in field.allowed_values:
        errors.append(f"{label} (not one of {field.allowed_values})")

    # CASE 5: Strings (Pattern & Length)
    if field.type == "string":
        s = str(value)
        if field.pattern and not re.match(field.pattern, s):
            errors.append(label)
        if field.max_length is not None and len(s) > field.max_length:
            errors.append(f"{label} (longer than {field.max_length} characters)")

    return errors


class RowValidator:
    """
    Validates one mapped row. All problems are collected so that the
    row is rejected once, with every reason attached.
    """

    def __init__(self, catalog: FieldCatalog, options: ImportOptions):
        self.catalog = catalog
        self.options = options

    def validate(self, row: MappedRow) -> List[str]:
        errors: List[str] = []
        contact_type = self.options.contact_type

        # Phase 1: Validate individual values (Types, Ranges, Regex)
        for entity, values in row.items():
            for name, value in values.items():
                field = self.catalog.get_field(contact_type, entity, name)
                if field is None:
                    errors.append(f"Unknown {entity} field '{name}'")
                    continue
                errors.extend(get_invalid_values(value, field, self.options.date_formats))

        membership = row.get(MEMBERSHIP, {})

        # Phase 2: Required field combinations
        required = self.catalog.get_required_fields()
        if not required.is_satisfied(membership):
            alternatives = [
                " and ".join(self.catalog.title_for(contact_type, n) for n in alternative)
                for alternative in required.match
            ]
            alternatives.append(
                " and ".join(self.catalog.title_for(contact_type, n) for n in required.create)
            )
            errors.append("Missing required fields: " + " OR ".join(alternatives))

        # Phase 3: Membership business rules
        # Rows updating by id inherit the dates of the existing membership
        if (
            is_empty(membership.get("id"))
            and is_empty(membership.get("start_date"))
            and is_empty(membership.get("join_date"))
        ):
            errors.append("Membership Start Date is required to create a memberships.")

        if (
            self.options.is_update_existing
            and parse_bool(membership.get("is_override"))
            and is_empty(membership.get("status_id"))
        ):
            errors.append("Required parameter missing: Status")

        return errors

    def validate_or_raise(self, row: MappedRow) -> None:
        errors = self.validate(row)
        if errors:
            raise RowValidationError(errors)
