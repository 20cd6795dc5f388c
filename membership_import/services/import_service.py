import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from membership_import.models.mapping import (
    FieldMapping,
    ImportJobInfo,
    ImportOptions,
    ImportSummary,
    PreviewResult,
)
from membership_import.services import stores
from membership_import.services.contact_resolver import ContactResolver
from membership_import.services.field_catalog import FieldCache, FieldCatalog
from membership_import.services.membership_status import MembershipStatusCalculator
from membership_import.services.orchestrator import ImportOrchestrator, KeyedLocks, Row
from membership_import.services.rules import SqlMembershipStatusRules, SqlMembershipTypeDateRules

logger = logging.getLogger(__name__)

# Shared by every import in the process; call field_cache.invalidate() after custom field changes
field_cache = FieldCache()
field_catalog = FieldCatalog(stores.SqlFieldMetadataStore(), field_cache)
contact_locks = KeyedLocks()

def build_orchestrator(
    job_id: Optional[str],
    mapping: List[FieldMapping],
    options: ImportOptions,
    session_factory: sessionmaker = None,
    catalog: FieldCatalog = None,
) -> ImportOrchestrator:
    if catalog is None:
        # The shared cache only holds fields of the default database
        catalog = field_catalog if session_factory is None else FieldCatalog(
            stores.SqlFieldMetadataStore(session_factory)
        )
    contact_store = stores.SqlContactStore(session_factory)
    return ImportOrchestrator(
        catalog=catalog,
        mapping=mapping,
        options=options,
        membership_store=stores.SqlMembershipStore(session_factory),
        contact_resolver=ContactResolver(contact_store, contact_store, options.contact_type),
        calculator=MembershipStatusCalculator(
            SqlMembershipTypeDateRules(session_factory),
            SqlMembershipStatusRules(session_factory),
        ),
        progress_sink=stores.SqlProgressSink(job_id, session_factory),
        locks=contact_locks,
    )

def preview_import(
    rows: Sequence[Row],
    mapping: List[FieldMapping],
    options: ImportOptions,
    session_factory: sessionmaker = None,
) -> PreviewResult:
    return build_orchestrator(None, mapping, options, session_factory).preview(rows)

def create_import(
    mapping: List[FieldMapping],
    options: ImportOptions,
    session_factory: sessionmaker = None,
) -> ImportJobInfo:
    """Registers a job; its rows are imported later by run_import."""
    return stores.create_job(options, mapping, session_factory)

def start_import(
    rows: Sequence[Row],
    mapping: List[FieldMapping],
    options: ImportOptions,
    session_factory: sessionmaker = None,
    workers: int = 1,
) -> ImportSummary:
    job = create_import(mapping, options, session_factory)
    return run_import(job.id, rows, session_factory, workers)

def resume_import(job_id: str, session_factory: sessionmaker = None) -> ImportJobInfo:
    """
    Queues a job that was cancelled, failed or interrupted so it can run again.
    """
    job = stores.get_job(job_id, session_factory)
    if job.status == "completed":
        raise ValueError(f"Import job {job_id} is already completed")
    stores.set_job_status(job_id, "queued", session_factory)
    return stores.get_job(job_id, session_factory)

def run_import(
    job_id: str,
    rows: Sequence[Row],
    session_factory: sessionmaker = None,
    workers: int = 1,
) -> ImportSummary:
    """
    Runs (or resumes) an import job with its saved mapping and options.
    Rows committed by an earlier run of the same job are skipped.
    A job cancelled before it started is left untouched.
    """
    job = stores.get_job(job_id, session_factory)
    if job.status == "completed":
        raise ValueError(f"Import job {job_id} is already completed")
    if job.status == "cancelled":
        logger.info("Import job %s was cancelled before it started", job_id)
        return ImportSummary(job_id=job_id, cancelled=True)

    logger.info("Running import job %s with %d rows", job_id, len(rows))
    stores.set_job_status(job_id, "running", session_factory)
    try:
        orchestrator = build_orchestrator(job_id, job.mapping, job.options, session_factory)
        summary = orchestrator.run(
            rows,
            should_cancel=lambda: stores.is_job_cancelled(job_id, session_factory),
            workers=workers,
        )
    except Exception:
        logger.exception("Import job %s failed", job_id)
        stores.set_job_status(job_id, "failed", session_factory)
        raise
    summary.job_id = job_id

    if summary.cancelled:
        logger.info("Import job %s was cancelled", job_id)
    else:
        stores.set_job_status(job_id, "completed", session_factory)
    return summary

def cancel_import(job_id: str, session_factory: sessionmaker = None) -> None:
    job = stores.get_job(job_id, session_factory)
    if job.status == "completed":
        raise ValueError(f"Import job {job_id} is already completed")
    stores.set_job_status(job_id, "cancelled", session_factory)
