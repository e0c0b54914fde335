"""
Crash-safe file primitives for the memory store.

``AtomicStorage`` manages one JSON file per collection inside a storage
directory, plus a rotation of backups under ``backups/``:

```
{storage_dir}/
  agents.json
  decisions.json
  ...
  backups/
    agents.1.bak      # newest
    agents.2.bak
    ...
    agents.{max_backups}.bak
```

Write path: serialize -> temp file in the same directory (flush + fsync) ->
rotate the current live file into the backups -> ``os.replace`` the temp file
onto the live path. Readers therefore see either the previous or the new file,
never a partial one.

All methods are synchronous. The async store wraps them in
``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from .errors import PersistenceError


class AtomicStorage:
    """Atomic JSON file storage with backup rotation."""

    def __init__(
        self,
        base_path: Path | str,
        *,
        backup_enabled: bool = True,
        max_backups: int = 5,
    ) -> None:
        self.base_path = Path(base_path)
        self.backup_dir = self.base_path / "backups"
        self.backup_enabled = backup_enabled
        self.max_backups = max(1, max_backups)

    def initialize(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.base_path / f"{name}.json"

    def backup_path(self, name: str, index: int) -> Path:
        return self.backup_dir / f"{name}.{index}.bak"

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def write(self, name: str, data: Any) -> None:
        """Atomically replace the live file for ``name`` with ``data`` as JSON.

        Raises:
            PersistenceError: If any step fails. The previous live file is left
                as it was and the temp file is removed.
        """
        path = self.path_for(name)
        try:
            payload = json.dumps(data, indent=2)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Cannot serialize {name}: {exc}", collection=name, path=path) from exc

        temp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Same directory as the target so the final rename stays on one filesystem
            temp_fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{name}_", suffix=".tmp")
            temp_path = Path(temp_name)
            with os.fdopen(temp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())

            if self.backup_enabled and path.exists():
                self.backup(name)

            os.replace(temp_path, path)
            temp_path = None
        except OSError as exc:
            raise PersistenceError(f"Failed to write {name}: {exc}", collection=name, path=path) from exc
        finally:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()

    def read(self, name: str) -> Any:
        """Return the parsed live file, or None when it does not exist.

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed.
        """
        return self._read_path(name, self.path_for(name))

    def read_backup(self, name: str, index: int) -> Any:
        return self._read_path(name, self.backup_path(name, index))

    def backup(self, name: str) -> Optional[Path]:
        """Copy the live file into slot 1, shifting older backups down.

        Returns the new backup path, or None when there is no live file.
        """
        path = self.path_for(name)
        if not path.exists():
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        oldest = self.backup_path(name, self.max_backups)
        if oldest.exists():
            oldest.unlink()
        for index in range(self.max_backups - 1, 0, -1):
            current = self.backup_path(name, index)
            if current.exists():
                os.replace(current, self.backup_path(name, index + 1))

        target = self.backup_path(name, 1)
        shutil.copy2(path, target)
        return target

    def restore(self, name: str, index: int = 1) -> bool:
        """Copy backup ``index`` over the live file. Returns False if it is missing."""
        source = self.backup_path(name, index)
        if not source.exists():
            return False
        path = self.path_for(name)
        try:
            temp_fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{name}_", suffix=".tmp")
            os.close(temp_fd)
            shutil.copy2(source, temp_name)
            os.replace(temp_name, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to restore {name} from {source}: {exc}", collection=name, path=path) from exc
        return True

    def delete(self, name: str) -> None:
        """Remove the live file and every backup of ``name``."""
        self.path_for(name).unlink(missing_ok=True)
        for backup in self.list_backups(name):
            backup.unlink(missing_ok=True)

    def list_backups(self, name: str) -> List[Path]:
        """Return existing backups for ``name``, newest first."""
        return [
            self.backup_path(name, index)
            for index in range(1, self.max_backups + 1)
            if self.backup_path(name, index).exists()
        ]

    def _read_path(self, name: str, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read {path.name}: {exc}", collection=name, path=path) from exc
