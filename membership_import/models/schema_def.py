from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict

FieldType = Literal["string", "integer", "float", "boolean", "date", "datetime"]

MEMBERSHIP = "Membership"
CONTACT = "Contact"
ENTITY_LABELS = [MEMBERSHIP, CONTACT]

# Key of the "do not import" entry in the field catalog
DO_NOT_IMPORT = ""

class ImportField(BaseModel):
    # Loaded once per contact type and shared between rows
    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    entity_label: Optional[str] = None
    type: FieldType = "string"
    required: bool = False
    target_property: Optional[str] = None
    allowed_values: Optional[List[str]] = None

    # --- validation constraints ---
    pattern: Optional[str] = None
    max_length: Optional[int] = None
    min_value: Optional[float] = None

    @property
    def property_name(self) -> str:
        return self.target_property or self.name


class RequiredFields(BaseModel):
    """
    A row is acceptable when it has ALL create fields, or ALL fields
    of any one match alternative.
    """
    match: List[List[str]]
    create: List[str]

    def is_satisfied(self, values: dict) -> bool:
        if all(values.get(name) not in (None, "") for name in self.create):
            return True
        return any(
            all(values.get(name) not in (None, "") for name in alternative)
            for alternative in self.match
        )


SENTINEL_FIELD = ImportField(name=DO_NOT_IMPORT, title="- do not import -")

MEMBERSHIP_FIELDS = [
    ImportField(name="id", title="Membership ID", entity_label=MEMBERSHIP, type="integer", min_value=1),
    ImportField(
        name="contact_id",
        title="Contact ID",
        entity_label=MEMBERSHIP,
        type="integer",
        min_value=1,
    ),
    ImportField(
        name="membership_type_id",
        title="Membership Type",
        entity_label=MEMBERSHIP,
        type="integer",
        required=True,
        min_value=1,
    ),
    ImportField(name="join_date", title="Member Since", entity_label=MEMBERSHIP, type="date"),
    ImportField(name="start_date", title="Membership Start Date", entity_label=MEMBERSHIP, type="date"),
    ImportField(name="end_date", title="Membership Expiration Date", entity_label=MEMBERSHIP, type="date"),
    ImportField(name="source", title="Membership Source", entity_label=MEMBERSHIP, max_length=128),
    ImportField(name="status_id", title="Membership Status", entity_label=MEMBERSHIP, type="integer", min_value=1),
    ImportField(name="is_override", title="Status Override", entity_label=MEMBERSHIP, type="boolean"),
    ImportField(
        name="status_override_end_date",
        title="Status Override End Date",
        entity_label=MEMBERSHIP,
        type="date",
    ),
    ImportField(name="is_test", title="Test", entity_label=MEMBERSHIP, type="boolean"),
    ImportField(name="is_pay_later", title="Is Pay Later", entity_label=MEMBERSHIP, type="boolean"),
    ImportField(name="campaign_id", title="Campaign ID", entity_label=MEMBERSHIP, type="integer", min_value=1),
]

CONTACT_MATCHING_FIELDS = [
    ImportField(
        name="external_identifier",
        title="External Identifier",
        entity_label=CONTACT,
        max_length=64,
    ),
    ImportField(
        name="email",
        title="Email",
        entity_label=CONTACT,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        max_length=254,
    ),
    ImportField(name="first_name", title="First Name", entity_label=CONTACT, max_length=64),
    ImportField(name="last_name", title="Last Name", entity_label=CONTACT, max_length=64),
    ImportField(name="organization_name", title="Organization Name", entity_label=CONTACT, max_length=128),
    ImportField(name="household_name", title="Household Name", entity_label=CONTACT, max_length=128),
    ImportField(name="phone", title="Phone", entity_label=CONTACT, max_length=32),
]

# Contact types and the name fields that make sense for each of them
CONTACT_TYPE_NAME_FIELDS = {
    "Individual": ["first_name", "last_name"],
    "Organization": ["organization_name"],
    "Household": ["household_name"],
}

def contact_matching_fields(contact_type: str) -> List[ImportField]:
    """
    Contact fields usable for matching, minus the name fields that
    belong to other contact types.
    """
    foreign = {
        name
        for other_type, names in CONTACT_TYPE_NAME_FIELDS.items()
        if other_type != contact_type
        for name in names
    }
    own = set(CONTACT_TYPE_NAME_FIELDS.get(contact_type, []))
    return [f for f in CONTACT_MATCHING_FIELDS if f.name not in foreign or f.name in own]

REQUIRED_FIELDS = RequiredFields(match=[["id"]], create=["membership_type_id"])
