from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from membership_import.core.config import settings
from .schema_def import DO_NOT_IMPORT

# entity label -> field name -> value
MappedRow = Dict[str, Dict[str, Any]]

class FieldMapping(BaseModel):
    """Assignment of one input column to one entity field."""
    entity: Optional[str] = None
    name: str = DO_NOT_IMPORT

    @property
    def is_skipped(self) -> bool:
        return self.name == DO_NOT_IMPORT or not self.entity


class ImportStatus(str, Enum):
    IMPORTED = "IMPORTED"
    ERROR = "ERROR"
    DUPLICATE = "DUPLICATE"


class ImportOptions(BaseModel):
    contact_type: str = settings.DEFAULT_CONTACT_TYPE
    # "update" updates memberships matched by id, "skip" records them as duplicates
    on_duplicate: Literal["update", "skip"] = "update"
    create_missing_contacts: bool = settings.CREATE_MISSING_CONTACTS
    date_formats: Optional[List[str]] = None

    @property
    def is_update_existing(self) -> bool:
        return self.on_duplicate == "update"


class ExistingMembership(BaseModel):
    id: int
    contact_id: Optional[int] = None
    membership_type_id: Optional[int] = None
    join_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status_id: Optional[int] = None
    is_override: bool = False


class CalculatedDates(BaseModel):
    join_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class StatusResult(BaseModel):
    id: int
    name: str
    is_admin: bool = False


class ImportOutcome(BaseModel):
    row_number: int
    status: ImportStatus
    message: str = ""
    created_id: Optional[int] = None


class ImportSummary(BaseModel):
    job_id: Optional[str] = None
    total_rows: int = 0
    imported: int = 0
    errors: int = 0
    duplicates: int = 0
    skipped_committed: int = 0
    cancelled: bool = False

    def record(self, outcome: ImportOutcome) -> None:
        if outcome.status == ImportStatus.IMPORTED:
            self.imported += 1
        elif outcome.status == ImportStatus.DUPLICATE:
            self.duplicates += 1
        else:
            self.errors += 1


# --- Contact resolution results ---

class NotFound(BaseModel):
    kind: Literal["not_found"] = "not_found"
    description: str = ""


class Unique(BaseModel):
    kind: Literal["unique"] = "unique"
    contact_id: int


class Ambiguous(BaseModel):
    kind: Literal["ambiguous"] = "ambiguous"
    contact_ids: List[int]
    description: str = ""


ContactResolution = Union[NotFound, Unique, Ambiguous]


# --- API payloads ---

class ImportRequest(BaseModel):
    rows: List[List[Optional[str]]]
    mapping: List[FieldMapping]
    options: ImportOptions = Field(default_factory=ImportOptions)


class PreviewRow(BaseModel):
    row_number: int
    errors: List[str] = Field(default_factory=list)


class PreviewResult(BaseModel):
    is_valid: bool
    rows: List[PreviewRow] = Field(default_factory=list)


class ImportJobInfo(BaseModel):
    id: str
    status: str
    contact_type: str
    options: ImportOptions
    mapping: List[FieldMapping]
    summary: ImportSummary
