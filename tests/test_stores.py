import json
import pytest
from datetime import date
from sqlalchemy.exc import IntegrityError

from membership_import.db import models
from membership_import.models.mapping import FieldMapping, ImportOptions, ImportStatus
from membership_import.services import stores
from membership_import.services.stores import (
    SqlContactStore,
    SqlFieldMetadataStore,
    SqlMembershipStore,
    SqlProgressSink,
)

# --- Tests for SqlMembershipStore ---

def test_create_and_get_membership(seeded_db):
    """
    Goal: Storage format date strings are written as real dates.
    """
    store = SqlMembershipStore(seeded_db)

    new_id = store.create({
        "contact_id": 42,
        "membership_type_id": 1,
        "status_id": 2,
        "join_date": "2024-01-01",
        "start_date": "2024-01-01",
        "end_date": "2024-12-31",
        "skip_recent_view": True,
    })
    membership = store.get(new_id)

    assert membership.contact_id == 42
    assert membership.start_date == date(2024, 1, 1)
    assert membership.end_date == date(2024, 12, 31)
    assert membership.is_override is False

def test_get_missing_membership(seeded_db):
    assert SqlMembershipStore(seeded_db).get(12345) is None

def test_update_keeps_unset_columns(seeded_db):
    store = SqlMembershipStore(seeded_db)
    new_id = store.create({"contact_id": 42, "membership_type_id": 1, "start_date": "2024-01-01"})

    store.update({"id": new_id, "status_id": 6, "is_override": True, "source": None})
    membership = store.get(new_id)

    assert membership.status_id == 6
    assert membership.is_override is True
    assert membership.start_date == date(2024, 1, 1)

def test_update_missing_membership(seeded_db):
    with pytest.raises(KeyError):
        SqlMembershipStore(seeded_db).update({"id": 999, "status_id": 2})

def test_create_stores_custom_values(seeded_db):
    store = SqlMembershipStore(seeded_db)

    new_id = store.create({"contact_id": 42, "membership_type_id": 1, "custom": {"custom_7": "XL"}})

    db = seeded_db()
    row = db.get(models.Membership, new_id)
    assert json.loads(row.custom_json) == {"custom_7": "XL"}
    db.close()

def test_create_with_new_contact(seeded_db):
    """
    Goal: A record carrying contact parameters creates and links the contact.
    """
    store = SqlMembershipStore(seeded_db)

    new_id = store.create({
        "membership_type_id": 1,
        "start_date": "2024-01-01",
        "contact": {"contact_type": "Individual", "first_name": "Cleo", "email": "cleo@example.org"},
    })

    contact_id = store.get(new_id).contact_id
    assert SqlContactStore(seeded_db).get_contact_type(contact_id) == "Individual"

def test_create_contact_rolled_back_with_membership(seeded_db):
    """
    Goal: If the membership insert fails, the new contact is not left behind.
    """
    store = SqlMembershipStore(seeded_db)

    # membership_type_id is missing -> NOT NULL violation on commit
    with pytest.raises(IntegrityError):
        store.create({"contact": {"first_name": "Ghost", "email": "ghost@example.org"}})

    db = seeded_db()
    assert db.query(models.Contact).filter(models.Contact.first_name == "Ghost").count() == 0
    db.close()

# --- Tests for SqlContactStore ---

@pytest.fixture
def contacts(seeded_db):
    return SqlContactStore(seeded_db)

def test_find_duplicates_unique(contacts):
    ids = contacts.find_duplicates({"first_name": "ANN", "last_name": "lee", "email": "ann@example.org"}, "Individual")

    assert ids == [42]

def test_find_duplicates_ambiguous(contacts):
    ids = contacts.find_duplicates({"first_name": "Bob", "last_name": "Ray"}, "Individual")

    assert ids == [43, 44]

def test_find_duplicates_respects_contact_type(contacts):
    """
    Goal: An Organization is never matched by an Individual import.
    """
    assert contacts.find_duplicates({"email": "info@acme.test"}, "Individual") == []
    assert contacts.find_duplicates({"organization_name": "acme"}, "Organization") == [50]

def test_find_duplicates_by_external_identifier(contacts):
    assert contacts.find_duplicates({"external_identifier": "EXT-42"}, "Individual") == [42]

def test_find_duplicates_nothing_to_match(contacts):
    assert contacts.find_duplicates({"phone": "555"}, "Individual") == []

def test_contact_lookups(contacts):
    assert contacts.find_by_external_identifier("EXT-42") == 42
    assert contacts.find_by_external_identifier("EXT-0") is None
    assert contacts.get_contact_type(50) == "Organization"
    assert contacts.get_contact_type(999) is None
    assert contacts.dedupe_rule_fields("Individual") == ["first_name", "last_name", "email"]

# --- Tests for SqlFieldMetadataStore ---

def test_custom_fields_by_contact_type(seeded_db):
    db = seeded_db()
    db.add_all([
        models.CustomField(id=7, label="Shirt Size"),
        models.CustomField(id=8, label="Board Seat", data_type="boolean", extends_contact_type="Organization"),
        models.CustomField(id=9, label="Old", is_active=False),
        models.CustomField(id=10, label="Odd", data_type="blob"),
    ])
    db.commit()
    db.close()

    fields = SqlFieldMetadataStore(seeded_db).get_importable_fields("Individual")

    assert [f.name for f in fields] == ["custom_7", "custom_10"]
    assert fields[0].title == "Shirt Size"
    assert fields[1].type == "string"

# --- Tests for SqlProgressSink and jobs ---

@pytest.fixture
def job(session_factory):
    return stores.create_job(
        ImportOptions(contact_type="Individual"),
        [FieldMapping(entity="Membership", name="id")],
        session_factory,
    )

def test_create_and_get_job(session_factory, job):
    info = stores.get_job(job.id, session_factory)

    assert info.status == "draft"
    assert info.contact_type == "Individual"
    assert info.mapping[0].name == "id"
    assert info.summary.total_rows == 0

def test_get_missing_job(session_factory):
    with pytest.raises(KeyError):
        stores.get_job("nope", session_factory)

def test_progress_sink_overwrites_row(session_factory, job):
    """
    Goal: Each row has exactly one outcome; a retry replaces the earlier one.
    """
    sink = SqlProgressSink(job.id, session_factory)

    sink.set_row_status(1, ImportStatus.ERROR, "boom")
    sink.set_row_status(1, ImportStatus.IMPORTED, "", 11)
    sink.set_row_status(2, ImportStatus.DUPLICATE, "dup")

    outcomes = stores.list_outcomes(job.id, session_factory)
    assert [(o.row_number, o.status) for o in outcomes] == [
        (1, ImportStatus.IMPORTED),
        (2, ImportStatus.DUPLICATE),
    ]
    assert outcomes[0].created_id == 11
    assert sink.committed_rows() == {1}

    summary = stores.get_job(job.id, session_factory).summary
    assert summary.imported == 1
    assert summary.duplicates == 1
    assert summary.total_rows == 2

def test_job_cancellation_flag(session_factory, job):
    assert stores.is_job_cancelled(job.id, session_factory) is False

    stores.set_job_status(job.id, "cancelled", session_factory)

    assert stores.is_job_cancelled(job.id, session_factory) is True
    assert stores.get_job(job.id, session_factory).summary.cancelled is True
