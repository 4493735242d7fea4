"""
RBAC Service package.

This package decides whether a subject may perform an action on an
object within a domain and that domain's ancestors. It provides:

- app.main: API surface for administration, enforcement, reload and health.
- app.rbac: Tuple model, snapshot graph and enforcement engine.
- app.admin: Policy administration writing store and snapshot together.
- app.reload: Snapshot holder and reload coordinator.
- app.persistence: Tuple stores (CSV file, PostgreSQL, in-memory).

Guidelines:
- Enforcement and listings read only the published snapshot.
- Writers serialize on one lock and publish whole snapshots.
- Deny by default; enforcement never raises.
"""
