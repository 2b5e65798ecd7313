"""File-backed persistence for operator-entered Salesforce credentials."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from src.referral_hub.sync.schemas import SalesforceUserSettings

logger = structlog.get_logger(__name__)


class SalesforceSettingsStore:
    """Reads and writes the user credential tier as a JSON document.

    The file is written with owner-only permissions. A corrupt file is
    treated as "nothing saved" so the lower credential tiers still apply.

    Args:
        path: Location of the JSON file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SalesforceUserSettings | None:
        if not self._path.exists():
            return None
        try:
            return SalesforceUserSettings.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("settings_store.load_failed", path=str(self._path), error=str(exc))
            return None

    def save(self, settings: SalesforceUserSettings) -> SalesforceUserSettings:
        """Persist `settings`, stamping updated_at. Returns the stored value."""
        stored = settings.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(stored.model_dump_json(indent=2), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._path)
        logger.info("settings_store.saved", path=str(self._path))
        return stored

    def clear(self) -> bool:
        """Delete the saved settings. Returns True if a file was removed."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        logger.info("settings_store.cleared", path=str(self._path))
        return True
