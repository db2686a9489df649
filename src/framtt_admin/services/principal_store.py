"""
Principal store.

User management lives outside this package; the store is the read-only
view the authentication core needs. It is seeded from a YAML file or
populated directly (tests, the CLI).
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from framtt_admin.logging_config import get_logger
from framtt_admin.models.principal import Principal

logger = get_logger(__name__)


class PrincipalStore:
    """In-memory principal lookup by ID and email."""

    def __init__(self, principals: list[Principal] | None = None) -> None:
        self._by_id: dict[str, Principal] = {}
        self._id_by_email: dict[str, str] = {}
        for principal in principals or []:
            self.add(principal)

    @classmethod
    def from_yaml(cls, path: Path) -> "PrincipalStore":
        """
        Load principals from a YAML file.

        The file holds a ``principals`` list whose entries match the
        ``Principal`` fields, including ``password_hash``.
        """
        store = cls()
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        for entry in data.get("principals", []):
            try:
                store.add(Principal(**entry))
            except ValidationError as e:
                logger.error(f"Skipping invalid principal entry in {path}: {e}")

        logger.info(f"Loaded {len(store)} principals from {path}")
        return store

    def __len__(self) -> int:
        return len(self._by_id)

    def add(self, principal: Principal) -> None:
        """Add or replace a principal."""
        principal = principal.model_copy(update={"email": principal.email.lower()})
        previous = self._by_id.get(principal.id)
        if previous is not None:
            self._id_by_email.pop(previous.email, None)
        self._by_id[principal.id] = principal
        self._id_by_email[principal.email] = principal.id

    async def find_by_id(self, principal_id: str) -> Principal | None:
        return self._by_id.get(principal_id)

    async def find_by_email(self, email: str) -> Principal | None:
        principal_id = self._id_by_email.get(email.strip().lower())
        if principal_id is None:
            return None
        return self._by_id.get(principal_id)

    async def get_password_hash(self, principal_id: str) -> str | None:
        principal = self._by_id.get(principal_id)
        return principal.password_hash if principal else None
