"""Process-wide backup settings, persisted next to the backups."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .._utils import logger, utc_now
from .errors import BackupIOError
from .models import BackupSettingsState, BackupType, RetentionPolicy
from .utils import atomic_publish, write_bytes_durable

SETTINGS_FILE = "settings.json"


class SettingsStore:
    """Holds the current RetentionPolicy.

    Readers call ``get()`` whenever they need the policy; ``update()``
    validates, persists and then swaps the in-memory copy, so a new policy
    takes effect at the next trigger.
    """

    def __init__(self, backup_dir: str = "./backups"):
        self.path = Path(backup_dir) / SETTINGS_FILE
        self._state = BackupSettingsState()
        self._lock = asyncio.Lock()

    def load(self) -> BackupSettingsState:
        """Read the persisted settings, falling back to defaults."""
        if not self.path.exists():
            logger.info("No backup settings saved yet, using defaults")
            return self._state

        try:
            self._state = BackupSettingsState.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to load backup settings, using defaults: {e}")
        return self._state

    def get(self) -> RetentionPolicy:
        return self._state.policy

    def state(self) -> BackupSettingsState:
        return self._state

    async def update(self, changes: Dict[str, Any]) -> RetentionPolicy:
        """Apply a partial update.

        Raises:
            pydantic.ValidationError: invalid values; nothing is changed
            BackupIOError: the settings file could not be written
        """
        async with self._lock:
            policy = RetentionPolicy.model_validate({**self._state.policy.model_dump(), **changes})
            state = self._state.model_copy(update={"policy": policy})
            await self._persist(state)
            self._state = state

        logger.info(f"Backup settings updated: {policy.model_dump()}")
        return policy

    async def record_last_backup(self, backup_type: BackupType, at: Optional[datetime] = None) -> None:
        async with self._lock:
            state = self._state.model_copy(update={
                "last_backup_at": at or utc_now(),
                "last_backup_type": backup_type,
            })
            await self._persist(state)
            self._state = state

    async def _persist(self, state: BackupSettingsState) -> None:
        staged = self.path.with_name(f".{SETTINGS_FILE}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_bytes_durable(staged, state.model_dump_json(indent=2).encode("utf-8"))
            atomic_publish(staged, self.path)
        except OSError as e:
            raise BackupIOError(f"Failed to save backup settings: {e}") from e
