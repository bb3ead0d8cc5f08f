"""API endpoints for application settings."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.resolver import build_providers
from ..services.settings_store import PROVIDER_IDS, DatabaseSettingsProvider

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    """Request model for updating settings."""

    tmdb_api_key: Optional[str] = None
    tvdb_api_key: Optional[str] = None
    default_metadata_source: Optional[str] = None
    naming_template: Optional[str] = None
    create_backup: Optional[bool] = None
    write_metadata: Optional[bool] = None


class TestKeyRequest(BaseModel):
    provider: str
    api_key: Optional[str] = None


@router.get("")
async def get_settings(db: Session = Depends(get_db)):
    """Get application settings. API keys are masked."""
    store = DatabaseSettingsProvider(db)
    keys = store.get_api_keys()
    preferences = store.get_preferences()

    return {
        "tmdb_api_key": "***" if keys["tmdb"] else "",
        "tmdb_api_key_set": bool(keys["tmdb"]),
        "tvdb_api_key": "***" if keys["tvdb"] else "",
        "tvdb_api_key_set": bool(keys["tvdb"]),
        "default_metadata_source": store.get_primary_provider(),
        "naming_template": store.get_template(),
        "create_backup": preferences.create_backup,
        "write_metadata": preferences.write_metadata,
    }


@router.put("")
async def update_settings(data: SettingsUpdate, db: Session = Depends(get_db)):
    """Update application settings."""
    store = DatabaseSettingsProvider(db)

    if data.tmdb_api_key is not None:
        store.set_api_key("tmdb", data.tmdb_api_key)

    if data.tvdb_api_key is not None:
        store.set_api_key("tvdb", data.tvdb_api_key)

    if data.default_metadata_source is not None:
        if data.default_metadata_source not in PROVIDER_IDS:
            raise HTTPException(status_code=400, detail="Source must be 'tmdb' or 'tvdb'")
        store.set_primary_provider(data.default_metadata_source)

    if data.naming_template is not None:
        if not data.naming_template.strip():
            raise HTTPException(status_code=400, detail="Naming template cannot be empty")
        store.set_template(data.naming_template)

    store.set_preferences(
        create_backup=data.create_backup,
        write_metadata=data.write_metadata,
    )

    return await get_settings(db)


@router.post("/test-key")
async def test_api_key(request: TestKeyRequest, db: Session = Depends(get_db)):
    """Check an API key against its provider. Uses the stored key when none is given."""
    if request.provider not in PROVIDER_IDS:
        raise HTTPException(status_code=400, detail=f"Unknown provider '{request.provider}'")

    api_key = request.api_key
    if api_key is None:
        api_key = DatabaseSettingsProvider(db).get_api_keys()[request.provider]

    provider = build_providers({request.provider: api_key})[request.provider]
    try:
        return await provider.test_api_key()
    finally:
        await provider.close()
