"""
Unit tests for the RBAC main service.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from service_rbac.app.main import RbacService, create_app
from service_rbac.app.persistence import MemoryTupleStore, FileTupleStore
from service_rbac.app.rbac.models import TupleRecord
from shared.config import get_config
from shared.errors import StoreUnavailableError


class TestRbacService:
    """Test cases for RbacService."""

    @pytest.fixture
    def store(self):
        """Create an empty in-memory store."""
        return MemoryTupleStore()

    @pytest.fixture
    def rbac_service(self, store):
        """Create RbacService instance."""
        return RbacService(config=get_config("rbac", 6543, env="local"), store=store)

    @pytest.fixture
    def client(self, rbac_service):
        """Create test client; entering it runs startup."""
        with TestClient(rbac_service.app) as client:
            yield client

    def test_service_initialization(self, rbac_service, store):
        """Test service initialization."""
        assert rbac_service.service_name == "rbac"
        assert rbac_service.port == 6543
        assert rbac_service.store is store
        assert rbac_service.app.state.rbac_service is rbac_service

    def test_health_endpoint(self, client):
        """Health is liveness plus store status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "rbac"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"memory": "ok"}

    def test_end_to_end_scenario(self, client):
        """Policy listing and enforcement before and after assignment."""
        response = client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})
        assert response.status_code == 200

        response = client.get("/root/role/admin/policy")
        assert response.status_code == 200
        assert response.json() == [
            {"domain": "root", "subject": "admin", "object": "data1", "action": "write"}
        ]

        params = {"subject": "subjectX", "domain": "root", "object": "data1", "action": "write"}
        assert client.get("/enforce", params=params).json() == {"allowed": False}

        response = client.post("/root/subject/subjectX/role", json={"role": "admin"})
        assert response.status_code == 200
        assert response.json() == ["admin"]

        assert client.get("/enforce", params=params).json() == {"allowed": True}

    def test_enforce_missing_parameters_denies(self, client):
        response = client.get("/enforce", params={"subject": "alice"})

        assert response.status_code == 200
        assert response.json() == {"allowed": False}

    def test_policy_add_is_idempotent_and_delete_tolerates_absent(self, client, store):
        """Duplicate adds and absent deletes both succeed."""
        body = {"object": "data1", "action": "write"}

        client.post("/root/role/admin/policy", json=body)
        response = client.post("/root/role/admin/policy", json=body)
        assert len(response.json()) == 1
        assert len(store.records) == 1

        response = client.request("DELETE", "/root/role/admin/policy", json=body)
        assert response.status_code == 200
        assert response.json() == []

        response = client.request("DELETE", "/root/role/admin/policy", json=body)
        assert response.status_code == 200
        assert store.records == []

    def test_domain_policies(self, client):
        """Top-level domain routes manage direct policies."""
        body = {"subject": "alice", "object": "report", "action": "read"}

        response = client.post("/root", json=body)
        assert response.status_code == 200
        client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})

        assert len(client.get("/root").json()) == 2
        assert client.get("/root/policy").json() == client.get("/root").json()

        client.request("DELETE", "/root/policy", json=body)
        assert [p["subject"] for p in client.get("/root").json()] == ["admin"]

    def test_role_routes(self, client):
        """Roles, members and users of a domain."""
        response = client.post("/root/role", json={"subject": "admin", "role": "reader"})
        assert response.json() == [{"domain": "root", "subject": "admin", "role": "reader"}]

        client.post("/root/role/admin/subject", json={"subject": "alice"})
        client.post("/root/role/reader/user", json={"user": "bob"})

        assert client.get("/root/role").json() == ["reader", "admin"]
        assert client.get("/root/role/reader/subject").json() == ["admin", "bob"]
        assert client.get("/root/role/reader/user").json() == ["bob", "alice"]
        assert client.get("/root/subject/alice/role").json() == ["admin"]

        response = client.request("DELETE", "/root/role/reader/user", json={"user": "bob"})
        assert response.json() == ["alice"]

        response = client.request("DELETE", "/root/role/admin/subject", json={"subject": "alice"})
        assert response.json() == []

        response = client.request("DELETE", "/root/role", json={"subject": "admin", "role": "reader"})
        assert response.json() == []

    def test_user_route_rejects_roles(self, client):
        client.post("/root/role", json={"subject": "admin", "role": "reader"})

        response = client.post("/root/role/viewer/user", json={"user": "reader"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_empty_identifier_rejected(self, client):
        response = client.post("/root/role/admin/policy", json={"object": "", "action": "write"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("path", ["/enforce", "/domains", "/health", "/metrics"])
    def test_reserved_paths_rejected_as_domains(self, client, store, path):
        """Policies under a fixed route name could never be listed."""
        body = {"subject": "alice", "object": "report", "action": "read"}

        response = client.post(path, json=body)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert store.records == []

    def test_reserved_domain_rejected_on_nested_route(self, client):
        response = client.post("/metrics/role/admin/policy", json={"object": "data1", "action": "write"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_subdomain_routes_and_inheritance(self, client):
        """Links grant descendants their ancestors' policies."""
        response = client.post("/root/subdomain/team-a")
        assert response.status_code == 200
        assert response.json() == [{"domain": "root", "subdomain": "team-a"}]

        client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})
        client.post("/root/role/admin/subject", json={"subject": "alice"})

        params = {"subject": "alice", "domain": "team-a", "object": "data1", "action": "write"}
        assert client.get("/enforce", params=params).json() == {"allowed": True}

        assert client.get("/root/subdomain").json() == ["team-a"]
        assert client.get("/root/subdomain/team-a").json() == [{"domain": "root", "subdomain": "team-a"}]
        assert set(client.get("/domains").json()) == {"root", "team-a"}

        response = client.request("DELETE", "/root/subdomain/team-a")
        assert response.json() == []
        assert client.get("/root/subdomain/team-a").status_code == 404
        assert client.get("/enforce", params=params).json() == {"allowed": False}

    def test_subdomain_cycle_conflict(self, client):
        client.post("/a/subdomain/b")

        response = client.post("/b/subdomain/a")

        assert response.status_code == 409
        assert response.json()["code"] == "CYCLE_ERROR"
        assert client.get("/b/subdomain").json() == []

    def test_reload_endpoint(self, client, store):
        """Reload picks up tuples written directly to the store."""
        store.records.append(TupleRecord("p", ("alice", "root", "data1", "read")))

        response = client.post("/reload")

        assert response.status_code == 200
        assert response.json()["reloaded"] is True
        assert response.json()["tuples"] == 1
        params = {"subject": "alice", "domain": "root", "object": "data1", "action": "read"}
        assert client.get("/enforce", params=params).json() == {"allowed": True}

    def test_reload_failure_returns_502_and_keeps_serving(self, client, store):
        """A store outage during reload is reported, not fatal."""
        client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})
        store.load_all = AsyncMock(side_effect=StoreUnavailableError("connection refused"))

        response = client.post("/reload")

        assert response.status_code == 502
        assert response.json()["code"] == "STORE_UNAVAILABLE"
        assert len(client.get("/root/role/admin/policy").json()) == 1
        assert client.get("/health").status_code == 200

    def test_mutation_store_failure_returns_502(self, client, store):
        store.persist = AsyncMock(side_effect=StoreUnavailableError("disk full"))

        response = client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})

        assert response.status_code == 502
        assert client.get("/root/role/admin/policy").json() == []

    def test_startup_fails_when_initial_load_fails(self, rbac_service, store):
        """Without an initial load the service refuses to start."""
        store.load_all = AsyncMock(side_effect=StoreUnavailableError("connection refused"))

        with pytest.raises(StoreUnavailableError):
            with TestClient(rbac_service.app):
                pass

    def test_metrics_endpoint(self, client):
        client.get("/enforce", params={"subject": "a", "domain": "b", "object": "c", "action": "d"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'rbac_enforce_total{decision="deny"} 1.0' in response.text

    def test_file_backed_service_persists(self, tmp_path):
        """Mutations survive a restart through the policy file."""
        path = tmp_path / "policy.csv"
        config = get_config("rbac", 6543, env="local", rbac_policy_path=str(path))

        with TestClient(RbacService(config=config).app) as client:
            client.post("/root/role/admin/policy", json={"object": "data1", "action": "write"})

        assert "p, admin, root, data1, write" in path.read_text()

        service = RbacService(config=config)
        assert isinstance(service.store, FileTupleStore)
        with TestClient(service.app) as client:
            assert len(client.get("/root/role/admin/policy").json()) == 1

    def test_create_app(self):
        assert create_app().title == "RBAC Service"
