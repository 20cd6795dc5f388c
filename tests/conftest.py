import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from membership_import.db.database import init_db
from membership_import.db import models

@pytest.fixture
def session_factory():
    """
    Goal: Give each test its own empty in-memory database.
    StaticPool keeps the single in-memory connection alive between sessions.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()

@pytest.fixture
def seeded_db(session_factory):
    """
    Goal: A database with the usual membership statuses, two membership
    types and a few contacts.
    """
    db = session_factory()
    db.add_all([
        models.MembershipStatus(
            id=1, name="New", weight=1, is_current_member=True,
            start_event="join_date", end_event="join_date",
            end_event_adjust_unit="month", end_event_adjust_interval=3,
        ),
        models.MembershipStatus(
            id=2, name="Current", weight=2, is_current_member=True,
            start_event="start_date", end_event="end_date",
        ),
        models.MembershipStatus(
            id=3, name="Grace", weight=3, is_current_member=True,
            start_event="end_date", end_event="end_date",
            end_event_adjust_unit="month", end_event_adjust_interval=1,
        ),
        models.MembershipStatus(
            id=4, name="Expired", weight=4,
            start_event="end_date", start_event_adjust_unit="month", start_event_adjust_interval=1,
        ),
        models.MembershipStatus(id=5, name="Pending", weight=5, is_admin=True),
        models.MembershipStatus(
            id=6, name="Honorary", weight=0, is_admin=True,
            start_event="start_date",
        ),
        models.MembershipType(id=1, name="General", duration_unit="year", duration_interval=1),
        models.MembershipType(id=2, name="Lifetime", duration_unit="lifetime", duration_interval=1),
        models.MembershipType(
            id=3, name="Calendar", duration_unit="year", duration_interval=1,
            period_type="fixed", fixed_period_start_day="101",
        ),
        models.Contact(id=42, contact_type="Individual", first_name="Ann", last_name="Lee",
                       email="ann@example.org", external_identifier="EXT-42"),
        models.Contact(id=43, contact_type="Individual", first_name="Bob", last_name="Ray",
                       email="bob@example.org"),
        models.Contact(id=44, contact_type="Individual", first_name="Bob", last_name="Ray",
                       email="bob@example.org"),
        models.Contact(id=50, contact_type="Organization", organization_name="Acme",
                       email="info@acme.test"),
    ])
    db.commit()
    db.close()
    return session_factory
