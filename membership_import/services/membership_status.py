"""
Derived membership state: join/start/end dates and status.

Each date is resolved with an explicit precedence (row value, then the
existing membership, then a default) before the membership type rules fill
whatever is still missing. The status is then computed from the final dates
and reconciled with any status given in the import row.
"""
import logging
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

from membership_import.core.config import settings
from membership_import.models.errors import StatusMismatch
from membership_import.models.mapping import CalculatedDates, ExistingMembership, StatusResult
from membership_import.services.collaborators import MembershipStatusRules, MembershipTypeDateRules

logger = logging.getLogger(__name__)

DATE_FIELDS = ("join_date", "start_date", "end_date")

def _existing(existing: Optional[ExistingMembership], name: str) -> Any:
    return getattr(existing, name) if existing is not None else None

def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None

def resolve_start_date(row: Dict[str, Any], existing: Optional[ExistingMembership]) -> Optional[date]:
    return _first_set(row.get("start_date"), _existing(existing, "start_date"))

def resolve_join_date(
    row: Dict[str, Any],
    existing: Optional[ExistingMembership],
    start_date: Optional[date],
) -> Optional[date]:
    # Join date defaults to the start date when not supplied anywhere
    return _first_set(row.get("join_date"), _existing(existing, "join_date"), start_date)

def resolve_end_date(row: Dict[str, Any], existing: Optional[ExistingMembership]) -> Optional[date]:
    return _first_set(row.get("end_date"), _existing(existing, "end_date"))

def resolve_membership_type_id(row: Dict[str, Any], existing: Optional[ExistingMembership]) -> Optional[int]:
    return _first_set(row.get("membership_type_id"), _existing(existing, "membership_type_id"))

def resolve_is_override(row: Dict[str, Any], existing: Optional[ExistingMembership]) -> bool:
    return bool(_first_set(row.get("is_override"), _existing(existing, "is_override"), False))

def format_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(settings.DATE_STORAGE_FORMAT)

def format_dates(calculated: CalculatedDates, formatted: Dict[str, Any]) -> None:
    """
    Writes join/start/end into the record in storage format.
    Dates given in the row win over the calculated ones.
    """
    for name in DATE_FIELDS:
        value = formatted.get(name)
        if isinstance(value, date):
            formatted[name] = format_date(value)
        elif value is None and getattr(calculated, name) is not None:
            formatted[name] = format_date(getattr(calculated, name))


class MembershipStatusCalculator:

    def __init__(
        self,
        date_rules: MembershipTypeDateRules,
        status_rules: MembershipStatusRules,
        today: Callable[[], date] = date.today,
    ):
        self.date_rules = date_rules
        self.status_rules = status_rules
        self.today = today

    def calculate(
        self,
        membership_type_id: int,
        join_date: Optional[date],
        start_date: Optional[date],
        end_date: Optional[date],
        as_of: Optional[date] = None,
        exclude_admin: bool = True,
        formatted: Optional[Dict[str, Any]] = None,
    ) -> Tuple[CalculatedDates, Optional[StatusResult]]:
        calculated = self.date_rules.get_dates_for_type(membership_type_id, join_date, start_date, end_date)

        # Dates already known are never replaced by the type rules
        final = CalculatedDates(
            join_date=_first_set(join_date, calculated.join_date),
            start_date=_first_set(start_date, calculated.start_date),
            end_date=_first_set(end_date, calculated.end_date),
        )

        status = self.status_rules.get_status_by_date(
            final.start_date,
            final.end_date,
            final.join_date,
            as_of or self.today(),
            exclude_admin,
            membership_type_id,
            formatted,
        )
        logger.debug(
            "Membership type %s dates %s -> status %s",
            membership_type_id, final.model_dump(), status.name if status else None,
        )
        return final, status

    def calculate_for_row(
        self,
        row: Dict[str, Any],
        existing: Optional[ExistingMembership],
        formatted: Dict[str, Any],
    ) -> Tuple[CalculatedDates, Optional[StatusResult], bool]:
        """
        Applies the precedence rules to a coerced membership row and runs the
        calculation. Returns the dates, the calculated status and the
        effective override flag.
        """
        start_date = resolve_start_date(row, existing)
        join_date = resolve_join_date(row, existing, start_date)
        end_date = resolve_end_date(row, existing)
        membership_type_id = resolve_membership_type_id(row, existing)
        is_override = resolve_is_override(row, existing)

        # Administrative statuses are only ever assigned explicitly
        exclude_admin = not is_override
        if exclude_admin:
            formatted["exclude_is_admin"] = True

        dates, status = self.calculate(
            membership_type_id,
            join_date,
            start_date,
            end_date,
            exclude_admin=exclude_admin,
            formatted=formatted,
        )
        return dates, status, is_override


def reconcile_status(
    explicit_status_id: Optional[int],
    calculated: Optional[StatusResult],
    is_override: bool,
) -> int:
    """
    Picks the status to store. An explicit status must agree with the
    calculated one unless the importer asked to override it.
    """
    if explicit_status_id is None:
        if calculated is None:
            raise StatusMismatch(
                "Unable to determine membership status from your configured "
                "Membership Status Rules. Record was not imported."
            )
        return calculated.id

    if is_override:
        return explicit_status_id

    if calculated is None:
        raise StatusMismatch(
            f"Status in import row ({explicit_status_id}) does not match calculated status "
            "based on your configured Membership Status Rules. Record was not imported."
        )
    if explicit_status_id != calculated.id:
        raise StatusMismatch(
            f"Status in import row ({explicit_status_id}) does not match calculated status "
            f"based on your configured Membership Status Rules ({calculated.name}). "
            "Record was not imported."
        )
    return explicit_status_id
