import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from membership_import.core.config import settings
from membership_import.db.database import SessionLocal
from membership_import.db import models
from membership_import.models.mapping import (
    ExistingMembership,
    FieldMapping,
    ImportJobInfo,
    ImportOptions,
    ImportOutcome,
    ImportStatus,
    ImportSummary,
)
from membership_import.models.schema_def import MEMBERSHIP, ImportField
from membership_import.services.collaborators import UNSUPERVISED

logger = logging.getLogger(__name__)

CONTACT_COLUMNS = (
    "external_identifier",
    "first_name",
    "last_name",
    "organization_name",
    "household_name",
    "email",
    "phone",
)

MEMBERSHIP_COLUMNS = (
    "contact_id",
    "membership_type_id",
    "status_id",
    "join_date",
    "start_date",
    "end_date",
    "source",
    "is_override",
    "status_override_end_date",
    "is_test",
    "is_pay_later",
    "campaign_id",
)

CUSTOM_TYPES = ("string", "integer", "float", "boolean", "date", "datetime")


def _to_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return datetime.strptime(str(value), settings.DATE_STORAGE_FORMAT).date()


class _SqlStore:
    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def _get_db(self) -> Session:
        return self.session_factory()


class SqlFieldMetadataStore(_SqlStore):
    """Custom membership fields stored in the custom_fields table."""

    def get_importable_fields(self, contact_type: str) -> List[ImportField]:
        db = self._get_db()
        try:
            rows = (
                db.query(models.CustomField)
                .filter(models.CustomField.is_active.is_(True))
                .order_by(models.CustomField.id)
                .all()
            )
            return [
                ImportField(
                    name=f"custom_{row.id}",
                    title=row.label,
                    entity_label=MEMBERSHIP,
                    type=row.data_type if row.data_type in CUSTOM_TYPES else "string",
                    target_property=f"custom_{row.id}",
                )
                for row in rows
                if row.extends_contact_type in (None, contact_type)
            ]
        finally:
            db.close()


class SqlMembershipStore(_SqlStore):

    def get(self, membership_id: int) -> Optional[ExistingMembership]:
        db = self._get_db()
        try:
            row = db.query(models.Membership).filter(models.Membership.id == membership_id).first()
            if not row:
                return None
            return ExistingMembership(
                id=row.id,
                contact_id=row.contact_id,
                membership_type_id=row.membership_type_id,
                join_date=row.join_date,
                start_date=row.start_date,
                end_date=row.end_date,
                status_id=row.status_id,
                is_override=bool(row.is_override),
            )
        finally:
            db.close()

    def _apply(self, row: models.Membership, record: Dict[str, Any]) -> None:
        for column in MEMBERSHIP_COLUMNS:
            if column not in record or record[column] is None:
                continue
            value = record[column]
            if column in ("join_date", "start_date", "end_date", "status_override_end_date"):
                value = _to_date(value)
            setattr(row, column, value)
        if record.get("custom"):
            current = json.loads(row.custom_json) if row.custom_json else {}
            current.update(record["custom"])
            row.custom_json = json.dumps(current, default=str)

    def create(self, record: Dict[str, Any]) -> int:
        """
        Inserts the membership, and its contact when the record carries one,
        in a single transaction.
        """
        db = self._get_db()
        try:
            contact_params = record.get("contact")
            if contact_params:
                contact = models.Contact(
                    contact_type=contact_params.get("contact_type", settings.DEFAULT_CONTACT_TYPE),
                    **{k: contact_params.get(k) for k in CONTACT_COLUMNS},
                )
                db.add(contact)
                db.flush()
                logger.debug("Created contact %s for new membership", contact.id)
                record = {**record, "contact_id": contact.id}

            row = models.Membership()
            self._apply(row, record)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update(self, record: Dict[str, Any]) -> int:
        db = self._get_db()
        try:
            row = db.query(models.Membership).filter(models.Membership.id == record["id"]).first()
            if not row:
                raise KeyError(f"Membership with id {record['id']} not found")
            self._apply(row, record)
            db.commit()
            return row.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SqlContactStore(_SqlStore):
    """
    Contact lookups. Also acts as the ContactMatcher, using the dedupe
    rule fields configured per contact type.
    """

    def __init__(self, session_factory: sessionmaker = None, rule_fields: Dict[str, List[str]] = None):
        super().__init__(session_factory)
        self.rule_fields = rule_fields if rule_fields is not None else settings.DEDUPE_RULE_FIELDS

    def find_by_external_identifier(self, value: str) -> Optional[int]:
        db = self._get_db()
        try:
            row = db.query(models.Contact.id).filter(models.Contact.external_identifier == value).first()
            return row[0] if row else None
        finally:
            db.close()

    def get_contact_type(self, contact_id: int) -> Optional[str]:
        db = self._get_db()
        try:
            row = db.query(models.Contact.contact_type).filter(models.Contact.id == contact_id).first()
            return row[0] if row else None
        finally:
            db.close()

    def dedupe_rule_fields(self, contact_type: str, rule_mode: str = UNSUPERVISED) -> List[str]:
        return list(self.rule_fields.get(contact_type, []))

    def find_duplicates(
        self,
        contact_fields: Dict[str, Any],
        contact_type: str,
        rule_mode: str = UNSUPERVISED,
    ) -> List[int]:
        """
        A contact matches when every rule field present in the row equals the
        stored value (case-insensitive), or when the external identifier matches.
        """
        db = self._get_db()
        try:
            matched: Set[int] = set()

            criteria = {
                name: str(contact_fields[name]).strip().lower()
                for name in self.dedupe_rule_fields(contact_type, rule_mode)
                if name in contact_fields and name in CONTACT_COLUMNS
            }
            if criteria:
                query = db.query(models.Contact.id).filter(models.Contact.contact_type == contact_type)
                for name, value in criteria.items():
                    query = query.filter(func.lower(getattr(models.Contact, name)) == value)
                matched.update(r[0] for r in query.all())

            external_identifier = contact_fields.get("external_identifier")
            if external_identifier:
                query = db.query(models.Contact.id).filter(
                    models.Contact.external_identifier == str(external_identifier).strip()
                )
                matched.update(r[0] for r in query.all())

            return sorted(matched)
        finally:
            db.close()


class SqlProgressSink(_SqlStore):
    """Durable per-row outcome log of one import job."""

    def __init__(self, job_id: str, session_factory: sessionmaker = None):
        super().__init__(session_factory)
        self.job_id = job_id

    def set_row_status(
        self,
        row_number: int,
        status: ImportStatus,
        message: str = "",
        created_id: Optional[int] = None,
    ) -> None:
        db = self._get_db()
        try:
            row = (
                db.query(models.ImportRowOutcome)
                .filter(
                    models.ImportRowOutcome.job_id == self.job_id,
                    models.ImportRowOutcome.row_number == row_number,
                )
                .first()
            )
            # A resumed run overwrites the outcome of a previously failed row
            if row is None:
                row = models.ImportRowOutcome(job_id=self.job_id, row_number=row_number)
                db.add(row)
            row.status = ImportStatus(status).value
            row.message = message
            row.entity_id = created_id
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def committed_rows(self) -> Set[int]:
        db = self._get_db()
        try:
            rows = (
                db.query(models.ImportRowOutcome.row_number)
                .filter(
                    models.ImportRowOutcome.job_id == self.job_id,
                    models.ImportRowOutcome.status == ImportStatus.IMPORTED.value,
                )
                .all()
            )
            return {r[0] for r in rows}
        finally:
            db.close()


# --- Import jobs ---

def _get_db(session_factory: sessionmaker = None) -> Session:
    return (session_factory or SessionLocal)()

def _summarize(db: Session, job: models.ImportJob) -> ImportSummary:
    counts = dict(
        db.query(models.ImportRowOutcome.status, func.count(models.ImportRowOutcome.id))
        .filter(models.ImportRowOutcome.job_id == job.id)
        .group_by(models.ImportRowOutcome.status)
        .all()
    )
    imported = counts.get(ImportStatus.IMPORTED.value, 0)
    errors = counts.get(ImportStatus.ERROR.value, 0)
    duplicates = counts.get(ImportStatus.DUPLICATE.value, 0)
    return ImportSummary(
        job_id=job.id,
        total_rows=imported + errors + duplicates,
        imported=imported,
        errors=errors,
        duplicates=duplicates,
        cancelled=job.status == "cancelled",
    )

def _to_job_info(db: Session, job: models.ImportJob) -> ImportJobInfo:
    return ImportJobInfo(
        id=job.id,
        status=job.status,
        contact_type=job.contact_type,
        options=ImportOptions(**json.loads(job.options_json)),
        mapping=[FieldMapping(**m) for m in json.loads(job.mapping_json)],
        summary=_summarize(db, job),
    )

def create_job(
    options: ImportOptions,
    mapping: List[FieldMapping],
    session_factory: sessionmaker = None,
) -> ImportJobInfo:
    db = _get_db(session_factory)
    try:
        job = models.ImportJob(
            id=str(uuid.uuid4()),
            status="draft",
            contact_type=options.contact_type,
            options_json=options.model_dump_json(),
            mapping_json=json.dumps([m.model_dump() for m in mapping]),
            created_at=datetime.now().isoformat(),
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Created import job %s for %s contacts", job.id, job.contact_type)
        return _to_job_info(db, job)
    finally:
        db.close()

def get_job(job_id: str, session_factory: sessionmaker = None) -> ImportJobInfo:
    db = _get_db(session_factory)
    try:
        job = db.query(models.ImportJob).filter(models.ImportJob.id == job_id).first()
        if not job:
            raise KeyError(f"Import job with id {job_id} not found")
        return _to_job_info(db, job)
    finally:
        db.close()

def set_job_status(job_id: str, status: str, session_factory: sessionmaker = None) -> None:
    db = _get_db(session_factory)
    try:
        job = db.query(models.ImportJob).filter(models.ImportJob.id == job_id).first()
        if not job:
            raise KeyError(f"Import job with id {job_id} not found")
        job.status = status
        db.commit()
    finally:
        db.close()

def is_job_cancelled(job_id: str, session_factory: sessionmaker = None) -> bool:
    db = _get_db(session_factory)
    try:
        row = db.query(models.ImportJob.status).filter(models.ImportJob.id == job_id).first()
        return bool(row and row[0] == "cancelled")
    finally:
        db.close()

def list_outcomes(job_id: str, session_factory: sessionmaker = None) -> List[ImportOutcome]:
    db = _get_db(session_factory)
    try:
        rows = (
            db.query(models.ImportRowOutcome)
            .filter(models.ImportRowOutcome.job_id == job_id)
            .order_by(models.ImportRowOutcome.row_number)
            .all()
        )
        return [
            ImportOutcome(
                row_number=r.row_number,
                status=ImportStatus(r.status),
                message=r.message or "",
                created_id=r.entity_id,
            )
            for r in rows
        ]
    finally:
        db.close()
