import os
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "Membership Import"
    MAX_UPLOAD_SIZE_MB: int = 100
    UPLOAD_DIR: str = "uploads"
    DEBUG: bool = True
    DB_PATH: str = "data/memberships.db"
    LOG_LEVEL: str = "INFO"

    # Import behaviour
    DEFAULT_CONTACT_TYPE: str = "Individual"
    DATE_STORAGE_FORMAT: str = "%Y-%m-%d"
    CREATE_MISSING_CONTACTS: bool = False

    # Fields of the "Unsupervised" dedupe rule, per contact type
    DEDUPE_RULE_FIELDS: Dict[str, List[str]] = {
        "Individual": ["first_name", "last_name", "email"],
        "Organization": ["organization_name", "email"],
        "Household": ["household_name", "email"],
    }

settings = Settings()

# Uploads are written here before pandas reads them
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
