"""
Contracts the import pipeline expects from its storage and rules collaborators.
The SQLAlchemy implementations live in stores.py and rules.py.
"""
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Set

from membership_import.models.mapping import (
    CalculatedDates,
    ExistingMembership,
    ImportStatus,
    StatusResult,
)
from membership_import.models.schema_def import ImportField

UNSUPERVISED = "Unsupervised"


class FieldMetadataStore(Protocol):
    def get_importable_fields(self, contact_type: str) -> List[ImportField]:
        """Custom fields that can be imported for the given contact type."""
        ...


class MembershipStore(Protocol):
    def get(self, membership_id: int) -> Optional[ExistingMembership]: ...

    def create(self, record: Dict[str, Any]) -> int:
        """
        Persist a new membership and return its id.
        When `record["contact"]` is present the contact is created in the same
        transaction and linked to the membership.
        """
        ...

    def update(self, record: Dict[str, Any]) -> int: ...


class ContactMatcher(Protocol):
    def dedupe_rule_fields(self, contact_type: str, rule_mode: str = UNSUPERVISED) -> List[str]: ...

    def find_duplicates(
        self,
        contact_fields: Dict[str, Any],
        contact_type: str,
        rule_mode: str = UNSUPERVISED,
    ) -> List[int]: ...


class ContactStore(Protocol):
    def find_by_external_identifier(self, value: str) -> Optional[int]: ...

    def get_contact_type(self, contact_id: int) -> Optional[str]: ...


class MembershipTypeDateRules(Protocol):
    def get_dates_for_type(
        self,
        membership_type_id: int,
        join_date: Optional[date],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> CalculatedDates: ...


class MembershipStatusRules(Protocol):
    def get_status_by_date(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        join_date: Optional[date],
        as_of: date,
        exclude_admin: bool,
        membership_type_id: Optional[int],
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[StatusResult]: ...


class ImportProgressSink(Protocol):
    def set_row_status(
        self,
        row_number: int,
        status: ImportStatus,
        message: str = "",
        created_id: Optional[int] = None,
    ) -> None: ...

    def committed_rows(self) -> Set[int]:
        """Row numbers already IMPORTED for this job; a resumed run skips them."""
        ...
