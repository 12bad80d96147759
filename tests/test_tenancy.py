"""
Test suite for multi-tenancy

Tests tenant context handling, the tenant-aware storage wrapper and the
tenant registry.
"""

import pytest

from lending_ledger.errors import InvalidArgument
from lending_ledger.storage import InMemoryStorage
from lending_ledger.tenancy import (
    TENANT_FIELD, Tenant, TenantAwareStorage, TenantManager,
    get_current_tenant, set_current_tenant, tenant_context
)


class TestTenantContext:

    def teardown_method(self):
        set_current_tenant(None)

    def test_context_manager_restores_previous(self):
        set_current_tenant("OUTER")

        with tenant_context("INNER"):
            assert get_current_tenant() == "INNER"

        assert get_current_tenant() == "OUTER"

    def test_default_is_none(self):
        assert get_current_tenant() is None


class TestTenantAwareStorage:
    """Test record isolation between tenants"""

    def setup_method(self):
        self.inner = InMemoryStorage()
        self.storage = TenantAwareStorage(self.inner)

    def test_records_stamped_with_tenant(self):
        with tenant_context("T1"):
            self.storage.save("loans", "L1", {"id": "L1"})

        assert self.inner.load("loans", "L1")[TENANT_FIELD] == "T1"

    def test_tenants_see_only_their_records(self):
        with tenant_context("T1"):
            self.storage.save("loans", "L1", {"id": "L1", "status": "active"})
        with tenant_context("T2"):
            self.storage.save("loans", "L2", {"id": "L2", "status": "active"})

            assert self.storage.load("loans", "L1") is None
            assert [r["id"] for r in self.storage.load_all("loans")] == ["L2"]
            assert [r["id"] for r in self.storage.find("loans", {"status": "active"})] == ["L2"]
            assert self.storage.exists("loans", "L1") is False
            assert self.storage.delete("loans", "L1") is False

        assert self.inner.exists("loans", "L1")

    def test_super_admin_sees_everything(self):
        with tenant_context("T1"):
            self.storage.save("loans", "L1", {"id": "L1"})
        with tenant_context("T2"):
            self.storage.save("loans", "L2", {"id": "L2"})

        assert self.storage.count("loans") == 2

    def test_cannot_overwrite_other_tenant_record(self):
        with tenant_context("T1"):
            self.storage.save("loans", "L1", {"id": "L1"})

        with tenant_context("T2"):
            with pytest.raises(PermissionError):
                self.storage.save("loans", "L1", {"id": "L1", "hijacked": True})

    def test_super_admin_update_keeps_owner(self):
        with tenant_context("T1"):
            self.storage.save("loans", "L1", {"id": "L1", "status": "active"})

        self.storage.save("loans", "L1", {"id": "L1", "status": "settled"})

        with tenant_context("T1"):
            assert self.storage.load("loans", "L1")["status"] == "settled"

    def test_insert_stamped(self):
        with tenant_context("T1"):
            assert self.storage.insert("entries", "E1", {"id": "E1"}) is True
            assert self.storage.insert("entries", "E1", {"id": "E1"}) is False

        assert self.inner.load("entries", "E1")[TENANT_FIELD] == "T1"

    def test_transactions_delegate_to_inner(self):
        calls = []
        self.inner.begin_transaction = lambda: calls.append("begin")
        self.inner.commit = lambda: calls.append("commit")

        with self.storage.atomic():
            self.storage.save("loans", "L1", {"id": "L1"})

        assert calls == ["begin", "commit"]


class TestTenantManager:
    """Test the tenant registry"""

    def setup_method(self):
        self.manager = TenantManager(InMemoryStorage())

    def test_create_and_get(self):
        tenant = self.manager.create_tenant("Acme Lending", "ACME", contact_email="ops@acme.example")

        assert self.manager.get_tenant(tenant.id) == tenant
        assert self.manager.get_tenant_by_code("ACME").id == tenant.id
        assert tenant.display_name == "Acme Lending"

    def test_duplicate_code_rejected(self):
        self.manager.create_tenant("Acme Lending", "ACME")

        with pytest.raises(InvalidArgument, match="already exists"):
            self.manager.create_tenant("Another Acme", "ACME")

    def test_empty_code_rejected(self):
        with pytest.raises(InvalidArgument):
            self.manager.create_tenant("Nameless", "")

    def test_list_and_deactivate(self):
        acme = self.manager.create_tenant("Acme Lending", "ACME")
        self.manager.create_tenant("Beta Finance", "BETA")

        self.manager.set_active(acme.id, False)

        assert len(self.manager.list_tenants()) == 2
        assert [t.code for t in self.manager.list_tenants(is_active=True)] == ["BETA"]
        assert self.manager.set_active("missing", False) is None

    def test_tenant_dict_round_trip(self):
        tenant = Tenant(id="T1", name="Acme", code="ACME", display_name="Acme")

        assert Tenant.from_dict(tenant.to_dict()) == tenant
