import logging
from typing import Any, Dict, List, Optional

from membership_import.models.errors import ContactIdentifierMismatch, RowImportError
from membership_import.models.mapping import Ambiguous, ContactResolution, NotFound, Unique
from membership_import.services.collaborators import (
    UNSUPERVISED,
    ContactMatcher,
    ContactStore,
)

logger = logging.getLogger(__name__)

def _first_value(name: str, value: Any) -> Any:
    """
    Array-valued contact fields (e.g. several emails) contribute their
    first entry; nested dicts are keyed by the field name.
    """
    if isinstance(value, (list, tuple)):
        if not value:
            return ""
        value = value[0]
    if isinstance(value, dict):
        value = value.get(name, "")
    return value


def describe(contact_fields: Dict[str, Any], rule_fields: List[str]) -> str:
    """
    Human readable description of the contact a row points to, used in
    "No matching Contact found" messages.
    Example: {"first_name": "Ann", "email": "a@b.org"} -> "Ann a@b.org "
    """
    disp = ""
    for rule_field in rule_fields:
        key = rule_field.strip()
        if key in contact_fields:
            disp += f"{_first_value(key, contact_fields[key])} "

    external_identifier = contact_fields.get("external_identifier")
    if external_identifier:
        if disp:
            disp += f"AND {external_identifier}"
        else:
            disp = str(external_identifier)
    return disp


class ContactResolver:
    """
    Finds the contact a membership row belongs to.
    Matching itself is delegated to the ContactMatcher; this class only
    classifies the result.
    """

    def __init__(self, matcher: ContactMatcher, contact_store: ContactStore, contact_type: str):
        self.matcher = matcher
        self.contact_store = contact_store
        self.contact_type = contact_type

    def rule_fields(self) -> List[str]:
        return self.matcher.dedupe_rule_fields(self.contact_type, UNSUPERVISED)

    def describe(self, contact_fields: Dict[str, Any]) -> str:
        return describe(contact_fields, self.rule_fields())

    def matching_key(self, contact_fields: Dict[str, Any]) -> str:
        """Normalized identity of a contact; rows sharing it must not resolve concurrently."""
        parts = []
        for name in self.rule_fields():
            value = _first_value(name, contact_fields.get(name, ""))
            parts.append(str(value).strip().lower())
        parts.append(str(contact_fields.get("external_identifier", "")).strip().lower())
        return "|".join(parts)

    def resolve(self, contact_fields: Dict[str, Any]) -> ContactResolution:
        matched_ids = self.matcher.find_duplicates(contact_fields, self.contact_type, UNSUPERVISED)
        # The same contact may be reported by several rule criteria
        unique_ids = sorted(set(matched_ids))

        if not unique_ids:
            return NotFound(description=self.describe(contact_fields))
        if len(unique_ids) > 1:
            logger.debug("Contact fields matched %d contacts: %s", len(unique_ids), unique_ids)
            return Ambiguous(contact_ids=unique_ids, description=self.describe(contact_fields))
        return Unique(contact_id=unique_ids[0])

    def check_contact_id(self, contact_id: int) -> None:
        contact_type = self.contact_store.get_contact_type(contact_id)
        if contact_type is None:
            raise RowImportError(f"No contact found for this contact ID: {contact_id}")
        if contact_type != self.contact_type:
            raise RowImportError(
                f"Mismatched contact Types : contact {contact_id} is of type {contact_type}, "
                f"this import expects {self.contact_type}"
            )

    def check_external_identifier(self, external_identifier: Optional[str], contact_id: int) -> None:
        """
        The external identifier, when given next to a contact id, must point
        at that same contact.
        """
        if not external_identifier:
            return
        found_id = self.contact_store.find_by_external_identifier(external_identifier)
        if found_id != contact_id:
            raise ContactIdentifierMismatch(external_identifier, contact_id)
