"""
Policy administration for the RBAC Service.

Each mutation is one logical unit over the tuple store and the published
snapshot: the store write happens first, and only a successful write
publishes the new snapshot. Listings read the published snapshot only.
"""

from typing import Callable, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.errors import NotFoundError, ValidationError
from .rbac.graph import ModelGraph
from .rbac.models import (
    Policy, RoleAssignment, SubdomainLink, TupleRecord, PersistOp,
    validate_domain, validate_identifier
)
from .reload import EnforcerContext
from .persistence.base import TupleStore


class PolicyAdministration:
    """CRUD over policies, role assignments and subdomain links."""

    def __init__(self, context: EnforcerContext, store: TupleStore, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("rbac.admin")
        self.context = context
        self.store = store
        self.metrics = metrics

    async def _mutate(
        self,
        operation: str,
        build: Callable[[ModelGraph], ModelGraph],
        record: TupleRecord,
        op: PersistOp,
    ) -> ModelGraph:
        """Compute, persist and publish one change under the write lock."""
        async with self.context.write_lock:
            current = self.context.snapshot
            updated = build(current)

            if updated is current:
                self.logger.debug("Mutation is a no-op", operation=operation, values=list(record.values))
                return current

            await self.store.persist(record, op)
            self.context.publish(updated)

        if self.metrics:
            self.metrics.increment_counter("rbac_mutations_total", operation=operation)
        self.logger.info(
            "Model mutated",
            operation=operation,
            ptype=record.ptype,
            values=list(record.values),
            generation=self.context.generation
        )
        return updated

    # Policies

    async def add_policy(self, role: str, domain: str, obj: str, action: str) -> ModelGraph:
        validate_domain("domain", domain)
        policy = self._policy(role, domain, obj, action)
        return await self._mutate(
            "add_policy",
            lambda g: g.add_policy(role, domain, obj, action),
            policy.to_record(),
            PersistOp.ADD
        )

    async def remove_policy(self, role: str, domain: str, obj: str, action: str) -> ModelGraph:
        policy = self._policy(role, domain, obj, action)
        return await self._mutate(
            "remove_policy",
            lambda g: g.remove_policy(role, domain, obj, action),
            policy.to_record(),
            PersistOp.REMOVE
        )

    def list_policies(self, domain: str, role: Optional[str] = None) -> List[Policy]:
        return self.context.snapshot.list_policies(domain, role)

    # Role assignments

    async def add_role_assignment(self, subject: str, role: str, domain: str) -> ModelGraph:
        validate_domain("domain", domain)
        assignment = self._assignment(subject, role, domain)
        return await self._mutate(
            "add_role_assignment",
            lambda g: g.add_role_assignment(subject, role, domain),
            assignment.to_record(),
            PersistOp.ADD
        )

    async def remove_role_assignment(self, subject: str, role: str, domain: str) -> ModelGraph:
        assignment = self._assignment(subject, role, domain)
        return await self._mutate(
            "remove_role_assignment",
            lambda g: g.remove_role_assignment(subject, role, domain),
            assignment.to_record(),
            PersistOp.REMOVE
        )

    async def add_user_to_role(self, user: str, role: str, domain: str) -> ModelGraph:
        """Assign role to a person-type principal; role names are rejected.

        The role check runs against the snapshot held under the write lock.
        """
        validate_identifier("user", user)
        validate_domain("domain", domain)
        assignment = self._assignment(user, role, domain)

        def build(graph: ModelGraph) -> ModelGraph:
            if graph.is_role(domain, user):
                raise ValidationError(
                    f"'{user}' is a role in domain '{domain}', not a user",
                    {"user": user, "domain": domain}
                )
            return graph.add_role_assignment(user, role, domain)

        return await self._mutate("add_role_assignment", build, assignment.to_record(), PersistOp.ADD)

    def list_roles(self, domain: str) -> List[str]:
        return self.context.snapshot.list_roles(domain)

    def list_assignments(self, domain: str) -> List[RoleAssignment]:
        return self.context.snapshot.list_assignments(domain)

    def list_subjects_for_role(self, domain: str, role: str) -> List[str]:
        return self.context.snapshot.list_subjects_for_role(domain, role)

    def list_users_for_role(self, domain: str, role: str) -> List[str]:
        return self.context.snapshot.list_users_for_role(domain, role)

    def list_roles_for_subject(self, domain: str, subject: str) -> List[str]:
        return self.context.snapshot.list_roles_for_subject(domain, subject)

    # Domains

    async def add_subdomain_link(self, parent: str, child: str) -> ModelGraph:
        """Link child under parent; CycleError leaves store and snapshot untouched."""
        validate_domain("domain", parent)
        validate_domain("subdomain", child)
        link = self._link(parent, child)
        return await self._mutate(
            "add_subdomain_link",
            lambda g: g.add_subdomain_link(parent, child),
            link.to_record(),
            PersistOp.ADD
        )

    async def remove_subdomain_link(self, parent: str, child: str) -> ModelGraph:
        link = self._link(parent, child)
        return await self._mutate(
            "remove_subdomain_link",
            lambda g: g.remove_subdomain_link(parent, child),
            link.to_record(),
            PersistOp.REMOVE
        )

    def get_subdomain_link(self, parent: str, child: str) -> SubdomainLink:
        if not self.context.snapshot.has_subdomain_link(parent, child):
            raise NotFoundError(
                f"'{child}' is not a subdomain of '{parent}'",
                {"domain": parent, "subdomain": child}
            )
        return SubdomainLink(child, parent)

    def list_subdomains(self, domain: str) -> List[str]:
        return self.context.snapshot.list_subdomains(domain)

    def list_domains(self) -> List[str]:
        return self.context.snapshot.list_domains()

    # Validation

    @staticmethod
    def _policy(role: str, domain: str, obj: str, action: str) -> Policy:
        return Policy(
            validate_identifier("subject", role),
            validate_identifier("domain", domain),
            validate_identifier("object", obj),
            validate_identifier("action", action)
        )

    @staticmethod
    def _assignment(subject: str, role: str, domain: str) -> RoleAssignment:
        return RoleAssignment(
            validate_identifier("subject", subject),
            validate_identifier("role", role),
            validate_identifier("domain", domain)
        )

    @staticmethod
    def _link(parent: str, child: str) -> SubdomainLink:
        return SubdomainLink(
            validate_identifier("subdomain", child),
            validate_identifier("domain", parent)
        )
