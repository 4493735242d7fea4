"""
Unit tests for the tuple stores.
"""

import os

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from service_rbac.app.admin import PolicyAdministration
from service_rbac.app.persistence import (
    FileTupleStore, MemoryTupleStore, PostgresTupleStore, build_store
)
from service_rbac.app.rbac.graph import ModelGraph
from service_rbac.app.rbac.models import PersistOp, Policy, TupleRecord
from service_rbac.app.reload import EnforcerContext, ReloadCoordinator
from shared.config import get_config
from shared.errors import StoreUnavailableError, ValidationError
from shared.retry import RetryConfig


POLICY = TupleRecord("p", ("admin", "root", "data1", "write"))
ASSIGNMENT = TupleRecord("g", ("alice", "admin", "root"))
LINK = TupleRecord("g2", ("team-a", "root"))


class TestFileTupleStore:
    """Test cases for FileTupleStore."""

    @pytest.fixture
    def policy_file(self, tmp_path):
        """Write a policy file with comments and blank lines."""
        path = tmp_path / "policy.csv"
        path.write_text(
            "# seed policies\n"
            "p, admin, root, data1, write\n"
            "\n"
            "g, alice, admin, root\n"
            "g2, team-a, root\n"
        )
        return path

    @pytest.mark.asyncio
    async def test_load_all(self, policy_file):
        """Records are parsed in file order."""
        store = FileTupleStore(str(policy_file))

        assert await store.load_all() == [POLICY, ASSIGNMENT, LINK]

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        """A missing policy file loads as an empty model."""
        store = FileTupleStore(str(tmp_path / "absent.csv"))

        assert await store.load_all() == []
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_persist_add_and_remove(self, policy_file):
        """Incremental writes rewrite the file."""
        store = FileTupleStore(str(policy_file))
        extra = TupleRecord("p", ("reader", "root", "data1", "read"))

        await store.persist(extra, PersistOp.ADD)
        await store.persist(extra, PersistOp.ADD)
        await store.persist(ASSIGNMENT, PersistOp.REMOVE)

        assert await store.load_all() == [POLICY, LINK, extra]
        assert "p, reader, root, data1, read" in policy_file.read_text()

    @pytest.mark.asyncio
    async def test_persist_creates_file(self, tmp_path):
        """The first write creates a missing file."""
        path = tmp_path / "new.csv"
        store = FileTupleStore(str(path))

        await store.persist(POLICY, PersistOp.ADD)

        assert path.read_text() == "p, admin, root, data1, write\n"

    @pytest.mark.asyncio
    async def test_round_trip_through_graph(self, policy_file, tmp_path):
        """A graph written to a new file reloads equal."""
        source = await FileTupleStore(str(policy_file)).load_all()
        graph = ModelGraph.from_tuples(source)
        target = FileTupleStore(str(tmp_path / "copy.csv"))

        for record in graph.to_tuples():
            await target.persist(record, PersistOp.ADD)

        assert ModelGraph.from_tuples(await target.load_all()) == graph

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ['"quoted', "carriage\rreturn"])
    async def test_unencodable_identifier_never_reaches_file(self, tmp_path, value):
        """Rejected identifiers leave the file readable for later writes and reloads."""
        path = tmp_path / "policy.csv"
        store = FileTupleStore(str(path))
        context = EnforcerContext()
        admin = PolicyAdministration(context, store)

        with pytest.raises(ValidationError):
            await admin.add_policy("admin", "root", value, "write")

        assert not path.exists()

        await admin.add_policy("admin", "root", "data2", "read")
        graph = await ReloadCoordinator(context, store).reload()

        assert graph.has_policy(Policy("admin", "root", "data2", "read"))
        assert len(graph) == 1

    @pytest.mark.asyncio
    async def test_spaced_and_unicode_identifiers_round_trip(self, tmp_path):
        store = FileTupleStore(str(tmp_path / "policy.csv"))
        record = TupleRecord("p", ("admin", "root", "annual report", "lire-écrire"))

        await store.persist(record, PersistOp.ADD)

        assert await store.load_all() == [record]

    @pytest.mark.asyncio
    async def test_malformed_line_raises_validation_error(self, tmp_path):
        """Lines with the wrong arity name the offending line."""
        path = tmp_path / "bad.csv"
        path.write_text("p, admin, root\n")
        store = FileTupleStore(str(path))

        with pytest.raises(ValidationError) as exc_info:
            await store.load_all()

        assert exc_info.value.details["line"] == 1

    @pytest.mark.asyncio
    async def test_unreadable_path_raises_store_error(self, tmp_path):
        """A directory in place of the file is a store failure."""
        store = FileTupleStore(str(tmp_path))

        with pytest.raises(StoreUnavailableError):
            await store.load_all()


class TestMemoryTupleStore:
    """Test cases for MemoryTupleStore."""

    @pytest.mark.asyncio
    async def test_persist(self):
        store = MemoryTupleStore([POLICY])

        await store.persist(ASSIGNMENT, PersistOp.ADD)
        await store.persist(POLICY, PersistOp.REMOVE)

        assert await store.load_all() == [ASSIGNMENT]


class TestPostgresTupleStore:
    """Test cases for PostgresTupleStore."""

    @pytest.fixture
    def store(self):
        """Create a store that retries quickly."""
        return PostgresTupleStore(
            "postgres://localhost:5432/rbac",
            retry_config=RetryConfig.fixed(max_attempts=3, delay=0)
        )

    def test_rejects_unsafe_table_name(self):
        with pytest.raises(ValueError):
            PostgresTupleStore("postgres://localhost/rbac", table_name="rules; DROP TABLE x")

    @pytest.mark.asyncio
    async def test_start_gives_up_after_retries(self, store):
        """Connection failures exhaust the fixed retry budget."""
        with patch(
            "service_rbac.app.persistence.postgres.asyncpg.create_pool",
            new=AsyncMock(side_effect=OSError("connection refused"))
        ) as create_pool:
            with pytest.raises(StoreUnavailableError):
                await store.start()

        assert create_pool.await_count == 3
        assert store.pool is None

    @pytest.mark.asyncio
    async def test_load_all_requires_start(self, store):
        with pytest.raises(StoreUnavailableError):
            await store.load_all()

    @pytest.mark.asyncio
    async def test_load_all_decodes_rows(self, store):
        """Padded rows decode to records of the right arity."""
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[
            {"ptype": "p", "v0": "admin", "v1": "root", "v2": "data1", "v3": "write"},
            {"ptype": "g2", "v0": "team-a", "v1": "root", "v2": "", "v3": ""},
        ])
        acquire = MagicMock()
        acquire.__aenter__ = AsyncMock(return_value=conn)
        acquire.__aexit__ = AsyncMock(return_value=False)
        store.pool = MagicMock()
        store.pool.acquire.return_value = acquire

        assert await store.load_all() == [POLICY, LINK]

    @pytest.mark.asyncio
    async def test_persist_pads_columns(self, store):
        """Writes always bind all four value columns."""
        conn = MagicMock()
        conn.execute = AsyncMock()
        acquire = MagicMock()
        acquire.__aenter__ = AsyncMock(return_value=conn)
        acquire.__aexit__ = AsyncMock(return_value=False)
        store.pool = MagicMock()
        store.pool.acquire.return_value = acquire

        await store.persist(LINK, PersistOp.REMOVE)

        args = conn.execute.await_args.args
        assert "DELETE FROM rbac_rule" in args[0]
        assert args[1:] == ("g2", "team-a", "root", "", "")


class TestBuildStore:
    """Test cases for store selection."""

    def test_memory_by_default(self):
        config = get_config("rbac", 6543, env="local")

        assert isinstance(build_store(config), MemoryTupleStore)

    def test_file_when_policy_path_set(self, tmp_path):
        config = get_config("rbac", 6543, env="local", rbac_policy_path=str(tmp_path / "p.csv"))

        assert isinstance(build_store(config), FileTupleStore)

    def test_postgres_when_dsn_set(self):
        config = get_config(
            "rbac", 6543, env="local",
            rbac_database_url="postgres://localhost/rbac",
            rbac_table_name="policies",
            rbac_connect_attempts=7
        )
        store = build_store(config)

        assert isinstance(store, PostgresTupleStore)
        assert store.table_name == "policies"
        assert store.retry_config.max_attempts == 7

    def test_development_forces_local_file(self):
        config = get_config("rbac", 6543, env="development", rbac_database_url="postgres://x/y")
        store = build_store(config)

        assert isinstance(store, FileTupleStore)
        assert os.path.basename(store.path) == "policy.csv"
