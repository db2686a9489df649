"""
Unit tests for the principal store.
"""

import pytest
import yaml

from framtt_admin.models.principal import Principal, PrincipalStatus, Role
from framtt_admin.services.principal_store import PrincipalStore


class TestPrincipalStore:
    """Tests for lookups and YAML seeding."""

    @pytest.mark.unit
    async def test_lookup_by_id_and_email(self, principal_store, principals):
        admin = principals["admin"]

        assert (await principal_store.find_by_id("1")).email == admin.email
        assert (await principal_store.find_by_email(" Admin@FRAMTT.test ")).id == "1"
        assert await principal_store.find_by_email("missing@framtt.test") is None
        assert await principal_store.get_password_hash("missing") is None

    @pytest.mark.unit
    async def test_add_replaces_and_reindexes_email(self):
        store = PrincipalStore([Principal(id="1", email="old@framtt.test", role=Role.USER)])

        store.add(Principal(id="1", email="New@framtt.test", role=Role.CSM))

        assert len(store) == 1
        assert await store.find_by_email("old@framtt.test") is None
        assert (await store.find_by_email("new@framtt.test")).role == Role.CSM

    @pytest.mark.unit
    async def test_from_yaml(self, tmp_path, password_hash):
        path = tmp_path / "principals.yaml"
        path.write_text(
            yaml.safe_dump({
                "principals": [
                    {
                        "id": "1",
                        "email": "admin@framtt.test",
                        "full_name": "Ada Admin",
                        "role": "admin",
                        "password_hash": password_hash,
                    },
                    {
                        "id": "4",
                        "email": "gone@framtt.test",
                        "role": "user",
                        "status": "suspended",
                    },
                    {"id": "9", "email": "broken@framtt.test", "role": "root"},
                ]
            })
        )

        store = PrincipalStore.from_yaml(path)

        assert len(store) == 2
        assert await store.get_password_hash("1") == password_hash
        assert (await store.find_by_id("4")).status == PrincipalStatus.SUSPENDED
        assert await store.find_by_id("9") is None

    @pytest.mark.unit
    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert len(PrincipalStore.from_yaml(path)) == 0
