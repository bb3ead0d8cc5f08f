"""Settings collaborators: API keys and user preferences."""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session

from ..config import Preferences, settings
from ..models import AppSettings

PROVIDER_IDS = ("tmdb", "tvdb")


def get_setting(db: Session, key: str, default: str = "") -> str:
    """Get a setting value from the database."""
    setting = db.query(AppSettings).filter(AppSettings.key == key).first()
    return setting.value if setting else default


def set_setting(db: Session, key: str, value: str) -> None:
    """Set a setting value in the database."""
    setting = db.query(AppSettings).filter(AppSettings.key == key).first()
    if setting:
        setting.value = value
    else:
        setting = AppSettings(key=key, value=value)
        db.add(setting)
    db.commit()


class SettingsProvider(ABC):
    """What the rename pipeline needs to know about the user's configuration."""

    @abstractmethod
    def get_api_keys(self) -> dict[str, str]:
        ...

    @abstractmethod
    def get_preferences(self) -> Preferences:
        ...

    def get_primary_provider(self) -> str:
        return settings.default_provider

    def get_template(self) -> str:
        return settings.default_template


class StaticSettingsProvider(SettingsProvider):
    """Fixed in-memory settings."""

    def __init__(
        self,
        api_keys: Optional[dict] = None,
        preferences: Optional[Preferences] = None,
        primary_provider: Optional[str] = None,
        template: Optional[str] = None,
    ):
        self.api_keys = dict(api_keys or {})
        self.preferences = preferences or Preferences()
        self.primary_provider = primary_provider or settings.default_provider
        self.template = template or settings.default_template

    def get_api_keys(self) -> dict[str, str]:
        return dict(self.api_keys)

    def get_preferences(self) -> Preferences:
        return self.preferences

    def get_primary_provider(self) -> str:
        return self.primary_provider

    def get_template(self) -> str:
        return self.template


class DatabaseSettingsProvider(SettingsProvider):
    """Settings stored in the app_settings table, falling back to environment config."""

    def __init__(self, db: Session):
        self.db = db

    def get_api_keys(self) -> dict[str, str]:
        return {
            "tmdb": get_setting(self.db, "tmdb_api_key", settings.tmdb_api_key),
            "tvdb": get_setting(self.db, "tvdb_api_key", settings.tvdb_api_key),
        }

    def get_preferences(self) -> Preferences:
        defaults = Preferences()
        return Preferences(
            create_backup=get_setting(
                self.db, "create_backup", str(defaults.create_backup).lower()
            ) == "true",
            write_metadata=get_setting(
                self.db, "write_metadata", str(defaults.write_metadata).lower()
            ) == "true",
        )

    def get_primary_provider(self) -> str:
        return get_setting(self.db, "default_metadata_source", settings.default_provider)

    def get_template(self) -> str:
        return get_setting(self.db, "naming_template", settings.default_template)

    def set_api_key(self, provider_id: str, value: str):
        if provider_id not in PROVIDER_IDS:
            raise ValueError(f"Unknown provider '{provider_id}'")
        set_setting(self.db, f"{provider_id}_api_key", value)

    def set_preferences(self, create_backup: Optional[bool] = None, write_metadata: Optional[bool] = None):
        if create_backup is not None:
            set_setting(self.db, "create_backup", str(create_backup).lower())
        if write_metadata is not None:
            set_setting(self.db, "write_metadata", str(write_metadata).lower())

    def set_primary_provider(self, provider_id: str):
        if provider_id not in PROVIDER_IDS:
            raise ValueError(f"Unknown provider '{provider_id}'")
        set_setting(self.db, "default_metadata_source", provider_id)

    def set_template(self, template: str):
        set_setting(self.db, "naming_template", template)
