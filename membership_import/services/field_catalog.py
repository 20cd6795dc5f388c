import logging
import threading
from typing import Callable, Dict, List, Optional

from membership_import.models.schema_def import (
    CONTACT,
    DO_NOT_IMPORT,
    MEMBERSHIP,
    MEMBERSHIP_FIELDS,
    REQUIRED_FIELDS,
    SENTINEL_FIELD,
    ImportField,
    RequiredFields,
    contact_matching_fields,
)
from membership_import.services.collaborators import FieldMetadataStore

logger = logging.getLogger(__name__)

FieldSet = Dict[str, ImportField]

class FieldCache:
    """
    Keyed cache that is populated once and then only read.
    Readers never take the lock; a miss is filled by a single writer.
    """

    def __init__(self):
        self._values: Dict[str, FieldSet] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[FieldSet]:
        return self._values.get(key)

    def get_or_populate(self, key: str, loader: Callable[[], FieldSet]) -> FieldSet:
        value = self._values.get(key)
        if value is not None:
            return value

        with self._lock:
            # Another writer may have filled it while we waited
            value = self._values.get(key)
            if value is None:
                value = loader()
                self._values[key] = value
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._values.clear()
            else:
                self._values.pop(key, None)


class FieldCatalog:
    """
    Importable fields for membership imports, keyed by field name.
    """

    def __init__(self, metadata_store: Optional[FieldMetadataStore] = None, cache: Optional[FieldCache] = None):
        self.metadata_store = metadata_store
        self.cache = cache if cache is not None else FieldCache()

    def get_fields(self, contact_type: str) -> FieldSet:
        return self.cache.get_or_populate(
            f"membership_importable_fields{contact_type}",
            lambda: self._load_fields(contact_type),
        )

    def _load_fields(self, contact_type: str) -> FieldSet:
        fields: FieldSet = {DO_NOT_IMPORT: SENTINEL_FIELD}

        for field in contact_matching_fields(contact_type):
            fields[field.name] = field

        for field in MEMBERSHIP_FIELDS:
            if field.name == "contact_id":
                field = field.model_copy(update={"title": field.title + " (match to contact)"})
            fields[field.name] = field

        custom_fields: List[ImportField] = []
        if self.metadata_store is not None:
            custom_fields = self.metadata_store.get_importable_fields(contact_type)
        for field in custom_fields:
            fields[field.name] = field

        logger.debug(
            "Loaded %d importable fields for %s (%d custom)",
            len(fields), contact_type, len(custom_fields),
        )
        return fields

    def get_required_fields(self) -> RequiredFields:
        return REQUIRED_FIELDS

    def fields_for_entity(self, contact_type: str, entity: str) -> FieldSet:
        return {
            name: f for name, f in self.get_fields(contact_type).items()
            if f.entity_label == entity
        }

    def get_field(self, contact_type: str, entity: str, name: str) -> Optional[ImportField]:
        field = self.get_fields(contact_type).get(name)
        if field is None or field.entity_label != entity:
            return None
        return field

    def title_for(self, contact_type: str, name: str) -> str:
        field = self.get_fields(contact_type).get(name)
        return field.title if field else name

    def is_custom(self, contact_type: str, name: str) -> bool:
        field = self.get_fields(contact_type).get(name)
        return bool(field and field.entity_label == MEMBERSHIP and name.startswith("custom_"))

    def entities(self) -> List[str]:
        return [MEMBERSHIP, CONTACT]
