from typing import Any, Dict, List, Optional, Sequence

from membership_import.models.mapping import FieldMapping, MappedRow
from membership_import.models.schema_def import ENTITY_LABELS, ImportField
from membership_import.services import validator

class RowMapper:
    """
    Splits a flat input row into per-entity values using the column mapping
    configured for the import job. Column i of the row goes to mapping[i].
    """

    def __init__(self, mapping: List[FieldMapping]):
        self.mapping = list(mapping)

    def map(self, raw_row: Sequence[Any]) -> MappedRow:
        row: MappedRow = {entity: {} for entity in ENTITY_LABELS}

        # Pad missing trailing columns, extra columns have no mapping and are dropped
        padded = list(raw_row) + [""] * (len(self.mapping) - len(raw_row))

        for field_mapping, value in zip(self.mapping, padded):
            if field_mapping.is_skipped:
                continue
            row.setdefault(field_mapping.entity, {})[field_mapping.name] = _clean(value)

        return row


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def remove_empty_values(row: MappedRow) -> MappedRow:
    """
    Drops values that were not provided. An empty cell never clears a stored value.
    """
    return {
        entity: {
            name: value
            for name, value in values.items()
            if not validator.is_empty(value)
        }
        for entity, values in row.items()
    }


def coerce_values(
    values: Dict[str, Any],
    fields: Dict[str, ImportField],
    date_formats: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """
    Converts raw cell strings into Python values based on field type.
    Expects values that already passed validation.
    """
    coerced: Dict[str, Any] = {}

    for name, raw_val in values.items():
        field = fields.get(name)
        if field is None:
            coerced[name] = raw_val
        elif field.type == "integer":
            coerced[name] = validator.parse_int(raw_val)
        elif field.type == "float":
            coerced[name] = validator.parse_float(raw_val)
        elif field.type == "boolean":
            coerced[name] = validator.parse_bool(raw_val)
        elif field.type == "date":
            coerced[name] = validator.parse_date(raw_val, date_formats)
        elif field.type == "datetime":
            coerced[name] = validator.parse_datetime(raw_val, date_formats)
        else:
            # For strings or unknown types, keep the value as-is
            coerced[name] = raw_val

    return coerced
