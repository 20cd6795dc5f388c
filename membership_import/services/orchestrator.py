"""
Row-by-row membership import.

Each row goes Mapped -> Validated -> Resolved -> DatesCalculated -> Committed.
A row that fails at any step is recorded as ERROR with the reason and the
run moves on to the next row. Exactly one outcome is recorded per row.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from membership_import.models.errors import (
    AmbiguousMatch,
    CollaboratorFailure,
    ContactNotFound,
    MembershipNotFound,
    RowImportError,
)
from membership_import.models.mapping import (
    Ambiguous,
    ExistingMembership,
    FieldMapping,
    ImportOptions,
    ImportOutcome,
    ImportStatus,
    ImportSummary,
    PreviewResult,
    PreviewRow,
    Unique,
)
from membership_import.models.schema_def import CONTACT, MEMBERSHIP
from membership_import.services.collaborators import ImportProgressSink, MembershipStore
from membership_import.services.contact_resolver import ContactResolver
from membership_import.services.field_catalog import FieldCatalog
from membership_import.services.membership_status import (
    MembershipStatusCalculator,
    format_date,
    format_dates,
    reconcile_status,
)
from membership_import.services.row_mapper import RowMapper, coerce_values, remove_empty_values
from membership_import.services.validator import RowValidator

logger = logging.getLogger(__name__)

Row = Sequence[Any]


class KeyedLocks:
    """
    One lock per key, so rows for the same contact never resolve concurrently.
    A key's lock lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if not self._holders[key]:
                    del self._holders[key]
                    del self._locks[key]


class ImportOrchestrator:

    def __init__(
        self,
        catalog: FieldCatalog,
        mapping: List[FieldMapping],
        options: ImportOptions,
        membership_store: MembershipStore,
        contact_resolver: ContactResolver,
        calculator: MembershipStatusCalculator,
        progress_sink: ImportProgressSink,
        locks: Optional[KeyedLocks] = None,
    ):
        self.catalog = catalog
        self.options = options
        self.mapper = RowMapper(mapping)
        self.validator = RowValidator(catalog, options)
        self.membership_store = membership_store
        self.contact_resolver = contact_resolver
        self.calculator = calculator
        self.progress_sink = progress_sink
        self.locks = locks or KeyedLocks()

    # --- single row ---

    def import_row(self, row_number: int, raw_row: Row) -> ImportOutcome:
        try:
            outcome = self._process(row_number, raw_row)
        except RowImportError as e:
            logger.info("Row %d rejected: %s", row_number, e.message)
            outcome = ImportOutcome(row_number=row_number, status=ImportStatus.ERROR, message=e.message)
        except Exception as e:
            failure = CollaboratorFailure(e)
            logger.warning("Row %d failed in a collaborator: %s", row_number, failure.message, exc_info=True)
            outcome = ImportOutcome(row_number=row_number, status=ImportStatus.ERROR, message=failure.message)

        self.progress_sink.set_row_status(
            outcome.row_number, outcome.status, outcome.message, outcome.created_id
        )
        return outcome

    def _process(self, row_number: int, raw_row: Row) -> ImportOutcome:
        params = remove_empty_values(self.mapper.map(raw_row))
        self.validator.validate_or_raise(params)

        membership = coerce_values(
            params.get(MEMBERSHIP, {}),
            self.catalog.fields_for_entity(self.options.contact_type, MEMBERSHIP),
            self.options.date_formats,
        )
        contact_fields = dict(params.get(CONTACT, {}))

        existing = None
        if membership.get("id") is not None:
            if not self.options.is_update_existing:
                return ImportOutcome(
                    row_number=row_number,
                    status=ImportStatus.DUPLICATE,
                    message=f"Membership {membership['id']} already exists. The row was skipped.",
                )
            existing = self.membership_store.get(membership["id"])
            if existing is None:
                raise MembershipNotFound(membership["id"])

        formatted = self._formatted_record(membership)

        if existing is None and membership.get("contact_id") is None:
            # Rows for the same contact are resolved and committed one at a time
            with self.locks.hold(self.contact_resolver.matching_key(contact_fields)):
                self._resolve_contact(contact_fields, formatted)
                return self._commit(row_number, membership, existing, formatted)

        contact_id = membership.get("contact_id")
        if contact_id is not None:
            self.contact_resolver.check_contact_id(contact_id)
        elif existing is not None:
            contact_id = existing.contact_id
        self.contact_resolver.check_external_identifier(contact_fields.get("external_identifier"), contact_id)
        return self._commit(row_number, membership, existing, formatted)

    def _formatted_record(self, membership: Dict[str, Any]) -> Dict[str, Any]:
        formatted: Dict[str, Any] = {}
        custom: Dict[str, Any] = {}
        for name, value in membership.items():
            if self.catalog.is_custom(self.options.contact_type, name):
                custom[name] = value
            else:
                formatted[name] = value
        if custom:
            formatted["custom"] = custom
        # Imports never touch the "recent items" list
        formatted["skip_recent_view"] = True
        return formatted

    def _resolve_contact(self, contact_fields: Dict[str, Any], formatted: Dict[str, Any]) -> None:
        resolution = self.contact_resolver.resolve(contact_fields)

        if isinstance(resolution, Unique):
            formatted["contact_id"] = resolution.contact_id
        elif isinstance(resolution, Ambiguous):
            raise AmbiguousMatch(resolution.contact_ids)
        elif self.options.create_missing_contacts and contact_fields:
            formatted["contact"] = {**contact_fields, "contact_type": self.options.contact_type}
        else:
            raise ContactNotFound(resolution.description)

    def _commit(
        self,
        row_number: int,
        membership: Dict[str, Any],
        existing: Optional[ExistingMembership],
        formatted: Dict[str, Any],
    ) -> ImportOutcome:
        dates, calculated_status, is_override = self.calculator.calculate_for_row(membership, existing, formatted)
        format_dates(dates, formatted)
        formatted["status_id"] = reconcile_status(membership.get("status_id"), calculated_status, is_override)

        for name, value in formatted.items():
            if isinstance(value, date):
                formatted[name] = format_date(value)

        if existing is not None:
            formatted["id"] = existing.id
            entity_id = self.membership_store.update(formatted)
        else:
            entity_id = self.membership_store.create(formatted)

        return ImportOutcome(row_number=row_number, status=ImportStatus.IMPORTED, created_id=entity_id)

    # --- batches ---

    def run(
        self,
        rows: Sequence[Row],
        should_cancel: Optional[Callable[[], bool]] = None,
        start_row: int = 1,
        workers: int = 1,
    ) -> ImportSummary:
        """
        Imports all rows, skipping the ones already committed for this job.
        Cancellation is checked between rows. With workers > 1 the batch is
        split into contiguous ranges processed on a thread pool.
        """
        committed = self.progress_sink.committed_rows()
        numbered = list(enumerate(rows, start=start_row))

        if workers <= 1 or len(numbered) <= 1:
            summary = self._run_range(numbered, committed, should_cancel)
        else:
            size = -(-len(numbered) // workers)
            ranges = [numbered[i:i + size] for i in range(0, len(numbered), size)]
            summary = ImportSummary()
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for partial in pool.map(lambda r: self._run_range(r, committed, should_cancel), ranges):
                    summary.imported += partial.imported
                    summary.errors += partial.errors
                    summary.duplicates += partial.duplicates
                    summary.skipped_committed += partial.skipped_committed
                    summary.cancelled = summary.cancelled or partial.cancelled

        summary.total_rows = len(numbered)
        logger.info(
            "Membership import finished: %d imported, %d errors, %d duplicates, %d already committed%s",
            summary.imported, summary.errors, summary.duplicates, summary.skipped_committed,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    def _run_range(
        self,
        numbered: List[Tuple[int, Row]],
        committed: Set[int],
        should_cancel: Optional[Callable[[], bool]],
    ) -> ImportSummary:
        summary = ImportSummary()
        for row_number, raw_row in numbered:
            if should_cancel is not None and should_cancel():
                summary.cancelled = True
                break
            if row_number in committed:
                summary.skipped_committed += 1
                continue
            summary.record(self.import_row(row_number, raw_row))
        return summary

    def preview(self, rows: Sequence[Row], start_row: int = 1) -> PreviewResult:
        """Validation only, nothing is resolved or written."""
        results = []
        for row_number, raw_row in enumerate(rows, start=start_row):
            params = remove_empty_values(self.mapper.map(raw_row))
            results.append(PreviewRow(row_number=row_number, errors=self.validator.validate(params)))
        return PreviewResult(is_valid=all(not r.errors for r in results), rows=results)
