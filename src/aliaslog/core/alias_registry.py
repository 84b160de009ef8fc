"""
Alias registry: durable mapping of user -> named base paths.

JsonAliasRegistry reads its storage file once at construction and rewrites
the whole snapshot on every mutation. Writers are serialized by a single
lock and each write goes through a temp file + os.replace.
"""

import json
import os
import tempfile
import threading
from copy import copy
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .models import AliasDescriptor
from ..utils.exceptions import ConfigurationError, ValidationError
from ..utils.logger import LoggerMixin
from ..utils.validators import sanitize_alias_name


class AliasRegistry(Protocol):
    """Read interface the aggregator and watcher depend on."""

    def get_aliases_for_user(self, user_id: str) -> List[AliasDescriptor]:
        ...

    def get_alias(self, user_id: str, alias_name: str) -> Optional[AliasDescriptor]:
        ...

    def list_all_users(self) -> List[str]:
        ...


class InMemoryAliasRegistry(LoggerMixin):
    """Registry kept in memory; base class for the JSON-backed registry."""

    def __init__(self, aliases: Optional[Dict[str, List[AliasDescriptor]]] = None):
        self._lock = threading.RLock()
        self._aliases: Dict[str, List[AliasDescriptor]] = {}
        for user_id, items in (aliases or {}).items():
            self._aliases[user_id] = [copy(a) for a in items]

    def get_aliases_for_user(self, user_id: str) -> List[AliasDescriptor]:
        with self._lock:
            return [copy(a) for a in self._aliases.get(user_id, [])]

    def get_alias(self, user_id: str, alias_name: str) -> Optional[AliasDescriptor]:
        with self._lock:
            for alias in self._aliases.get(user_id, []):
                if alias.alias_name == alias_name:
                    return copy(alias)
        return None

    def list_all_users(self) -> List[str]:
        with self._lock:
            return list(self._aliases.keys())

    def add_alias(self, user_id: str, alias_name: str, base_path: str) -> AliasDescriptor:
        """
        Register a new alias. The name is sanitized; the path is stored
        verbatim and not validated.

        Raises:
            ValidationError: empty fields or duplicate alias name for the user
        """
        alias_name = sanitize_alias_name(alias_name or "")
        if not user_id or not alias_name or not base_path:
            raise ValidationError("user_id, alias_name and base_path are required")

        with self._lock:
            aliases = self._aliases.setdefault(user_id, [])
            if any(a.alias_name == alias_name for a in aliases):
                raise ValidationError(f"Alias '{alias_name}' already exists for user {user_id}")

            now = datetime.now()
            alias = AliasDescriptor(
                user_id=user_id,
                alias_name=alias_name,
                base_path=base_path,
                created_at=now,
                last_accessed_at=now,
            )
            aliases.append(alias)
            self._persist()

        self.logger.info(f"Added alias '{alias_name}' for user {user_id} -> {base_path}")
        return copy(alias)

    def remove_alias(self, user_id: str, alias_name: str) -> bool:
        with self._lock:
            aliases = self._aliases.get(user_id, [])
            for index, alias in enumerate(aliases):
                if alias.alias_name == alias_name:
                    del aliases[index]
                    if not aliases:
                        del self._aliases[user_id]
                    self._persist()
                    self.logger.info(f"Removed alias '{alias_name}' for user {user_id}")
                    return True
        return False

    def record_access(self, user_id: str, alias_name: str) -> None:
        with self._lock:
            for alias in self._aliases.get(user_id, []):
                if alias.alias_name == alias_name:
                    alias.access_count += 1
                    alias.last_accessed_at = datetime.now()
                    self._persist()
                    return

    def get_total_stats(self) -> Dict[str, Any]:
        with self._lock:
            per_user = {user_id: len(items) for user_id, items in self._aliases.items()}
        return {
            "totalUsers": len(per_user),
            "totalAliases": sum(per_user.values()),
            "aliasesByUser": per_user,
        }

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonAliasRegistry(InMemoryAliasRegistry):
    """Alias registry persisted as one JSON document."""

    def __init__(self, storage_file: str):
        super().__init__()
        self.storage_file = Path(storage_file)
        self._load()

    def _load(self) -> None:
        if not self.storage_file.exists():
            self.storage_file.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                self._persist()
            self.logger.info(f"Created alias storage file {self.storage_file}")
            return

        try:
            with open(self.storage_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load alias storage {self.storage_file}: {e}")

        with self._lock:
            self._aliases = {
                user_id: [AliasDescriptor.from_dict(user_id, item) for item in items]
                for user_id, items in data.get("userAliases", {}).items()
            }
        self.logger.info(f"Loaded aliases for {len(self._aliases)} users from {self.storage_file}")

    def _persist(self) -> None:
        snapshot = {
            "userAliases": {
                user_id: [
                    {k: v for k, v in alias.to_dict().items() if k != "userId"}
                    for alias in items
                ]
                for user_id, items in self._aliases.items()
            },
            "lastSaved": datetime.now().isoformat(),
        }

        directory = self.storage_file.parent
        directory.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.storage_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
