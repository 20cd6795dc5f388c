from typing import List, Optional
from pydantic import BaseModel

class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None


class RowImportError(Exception):
    """
    Base class for every failure that rejects a single import row.
    The batch always continues after one of these.
    """
    code = "row_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RowValidationError(RowImportError):
    """All validation problems of one row, joined into a single message."""
    code = "validation"

    def __init__(self, errors: List[str]):
        super().__init__("Invalid value for field(s) : " + ",".join(errors))
        self.errors = errors


class AmbiguousMatch(RowImportError):
    code = "ambiguous_match"

    def __init__(self, contact_ids: List[int]):
        super().__init__(
            "Multiple matching contact records detected for this row. "
            "The membership was not imported"
        )
        self.contact_ids = contact_ids


class ContactNotFound(RowImportError):
    code = "contact_not_found"

    def __init__(self, description: str):
        super().__init__(f"No matching Contact found for ({description})")
        self.description = description


class StatusMismatch(RowImportError):
    code = "status_mismatch"


class ContactIdentifierMismatch(RowImportError):
    code = "contact_identifier_mismatch"

    def __init__(self, external_identifier: str, contact_id: int):
        super().__init__(
            f"Mismatch of External ID:{external_identifier} and Contact Id:{contact_id}"
        )
        self.external_identifier = external_identifier
        self.contact_id = contact_id


class MembershipNotFound(RowImportError):
    code = "membership_not_found"

    def __init__(self, membership_id: int):
        super().__init__(f"No membership found with id {membership_id}")
        self.membership_id = membership_id


class CollaboratorFailure(RowImportError):
    """Wraps an unexpected exception raised by a storage or rules collaborator."""
    code = "collaborator_failure"

    def __init__(self, original: Exception):
        super().__init__(str(original) or original.__class__.__name__)
        self.original = original
