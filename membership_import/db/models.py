from sqlalchemy import Column, String, Text, Integer, Boolean, Date, ForeignKey, UniqueConstraint
from membership_import.db.database import Base

class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contact_type = Column(String(64), nullable=False, default="Individual")
    external_identifier = Column(String(64), unique=True, nullable=True, index=True)
    first_name = Column(String(64), nullable=True)
    last_name = Column(String(64), nullable=True)
    organization_name = Column(String(128), nullable=True)
    household_name = Column(String(128), nullable=True)
    email = Column(String(254), nullable=True, index=True)
    phone = Column(String(32), nullable=True)

class MembershipType(Base):
    __tablename__ = "membership_types"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    duration_unit = Column(String(16), nullable=False, default="year")   # day, month, year, lifetime
    duration_interval = Column(Integer, nullable=False, default=1)
    period_type = Column(String(16), nullable=False, default="rolling")  # rolling, fixed
    fixed_period_start_day = Column(String(4), nullable=True)             # MMDD, fixed periods only
    is_active = Column(Boolean, nullable=False, default=True)

class MembershipStatus(Base):
    __tablename__ = "membership_statuses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(128), nullable=False)

    # Window in which the status applies, relative to the membership dates
    start_event = Column(String(16), nullable=True)        # join_date, start_date, end_date
    start_event_adjust_unit = Column(String(16), nullable=True)
    start_event_adjust_interval = Column(Integer, nullable=True)
    end_event = Column(String(16), nullable=True)
    end_event_adjust_unit = Column(String(16), nullable=True)
    end_event_adjust_interval = Column(Integer, nullable=True)

    is_current_member = Column(Boolean, nullable=False, default=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    weight = Column(Integer, nullable=False, default=0)

class Membership(Base):
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    membership_type_id = Column(Integer, ForeignKey("membership_types.id"), nullable=False)
    status_id = Column(Integer, ForeignKey("membership_statuses.id"), nullable=True)
    join_date = Column(Date, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    source = Column(String(128), nullable=True)
    is_override = Column(Boolean, nullable=False, default=False)
    status_override_end_date = Column(Date, nullable=True)
    is_test = Column(Boolean, nullable=False, default=False)
    is_pay_later = Column(Boolean, nullable=False, default=False)
    campaign_id = Column(Integer, nullable=True)
    custom_json = Column(Text, nullable=True)                  # custom field values as JSON

class CustomField(Base):
    __tablename__ = "custom_fields"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    label = Column(String(255), nullable=False)
    data_type = Column(String(16), nullable=False, default="string")
    extends_contact_type = Column(String(64), nullable=True)   # None applies to every contact type
    is_required = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String, primary_key=True, index=True)
    status = Column(String(32), nullable=False, default="draft")  # draft, queued, running, completed, cancelled, failed
    contact_type = Column(String(64), nullable=False)
    options_json = Column(Text, nullable=False)
    mapping_json = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)

class ImportRowOutcome(Base):
    __tablename__ = "import_row_outcomes"
    __table_args__ = (UniqueConstraint("job_id", "row_number", name="uq_import_row"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    job_id = Column(String, ForeignKey("import_jobs.id"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)                # IMPORTED, ERROR, DUPLICATE
    message = Column(Text, nullable=True)
    entity_id = Column(Integer, nullable=True)
