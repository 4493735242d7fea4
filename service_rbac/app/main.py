"""
RBAC service: multi-tenant role-based access control over HTTP.
"""

import time
from typing import Dict, List, Optional

from fastapi import Body, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.logging import set_authz_context

from .admin import PolicyAdministration
from .reload import EnforcerContext, ReloadCoordinator
from .persistence import TupleStore, build_store
from .rbac.engine import EnforcementEngine
from .rbac.models import (
    PolicyResponse, RoleAssignmentResponse, SubdomainLinkResponse,
    DomainPolicyRequest, RolePolicyRequest, RoleAssignmentRequest,
    SubjectRequest, UserRequest, RoleRequest,
    EnforceResponse, ReloadResponse
)

SERVICE_NAME = "rbac"
SERVICE_PORT = 6543


class RbacService(BaseService):
    """RBAC service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, store: Optional[TupleStore] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        self.store = store or build_store(self.config)
        self.context = EnforcerContext(metrics=self.metrics)
        self.engine = EnforcementEngine(lambda: self.context.snapshot, metrics=self.metrics)
        self.admin = PolicyAdministration(self.context, self.store, metrics=self.metrics)
        self.reloader = ReloadCoordinator(self.context, self.store, metrics=self.metrics)

        self._setup_rbac_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.rbac_service = self

    def _setup_rbac_routes(self):
        """Set up RBAC routes. Fixed paths come before /{domain} patterns."""

        @self.app.get("/enforce", response_model=EnforceResponse)
        async def enforce(
            subject: Optional[str] = Query(None, description="Subject requesting access"),
            domain: Optional[str] = Query(None, description="Domain of the request"),
            object: Optional[str] = Query(None, description="Object acted on"),
            action: Optional[str] = Query(None, description="Action")
        ):
            """Decide whether subject may perform action on object in domain."""
            set_authz_context(subject, domain)
            allowed = self.engine.enforce(subject, domain, object, action)
            return EnforceResponse(allowed=allowed)

        @self.app.post("/reload", response_model=ReloadResponse)
        async def reload():
            """Rebuild the model from the tuple store."""
            start_time = time.time()
            graph = await self.reloader.reload()
            return ReloadResponse(
                reloaded=True,
                tuples=len(graph),
                duration_ms=round((time.time() - start_time) * 1000, 2)
            )

        @self.app.get("/domains", response_model=List[str])
        async def list_domains():
            """Every domain referenced by a tuple."""
            return self.admin.list_domains()

        # Domain-level policies

        @self.app.get("/{domain}", response_model=List[PolicyResponse])
        @self.app.get("/{domain}/policy", response_model=List[PolicyResponse])
        async def get_domain_policies(domain: str):
            """Every policy in the domain."""
            return self._policies(domain)

        @self.app.post("/{domain}", response_model=List[PolicyResponse])
        @self.app.post("/{domain}/policy", response_model=List[PolicyResponse])
        async def add_domain_policy(domain: str, request: DomainPolicyRequest):
            await self.admin.add_policy(request.subject, domain, request.object, request.action)
            return self._policies(domain)

        @self.app.delete("/{domain}", response_model=List[PolicyResponse])
        @self.app.delete("/{domain}/policy", response_model=List[PolicyResponse])
        async def remove_domain_policy(domain: str, request: DomainPolicyRequest = Body(...)):
            await self.admin.remove_policy(request.subject, domain, request.object, request.action)
            return self._policies(domain)

        # Roles

        @self.app.get("/{domain}/role", response_model=List[str])
        async def list_roles(domain: str):
            """Role names in the domain."""
            return self.admin.list_roles(domain)

        @self.app.post("/{domain}/role", response_model=List[RoleAssignmentResponse])
        async def add_role_assignment(domain: str, request: RoleAssignmentRequest):
            await self.admin.add_role_assignment(request.subject, request.role, domain)
            return self._assignments(domain)

        @self.app.delete("/{domain}/role", response_model=List[RoleAssignmentResponse])
        async def remove_role_assignment(domain: str, request: RoleAssignmentRequest = Body(...)):
            await self.admin.remove_role_assignment(request.subject, request.role, domain)
            return self._assignments(domain)

        # Role policies

        @self.app.get("/{domain}/role/{role}/policy", response_model=List[PolicyResponse])
        async def get_role_policies(domain: str, role: str):
            """Policies granted to the role in the domain."""
            return self._policies(domain, role)

        @self.app.post("/{domain}/role/{role}/policy", response_model=List[PolicyResponse])
        async def add_role_policy(domain: str, role: str, request: RolePolicyRequest):
            await self.admin.add_policy(role, domain, request.object, request.action)
            return self._policies(domain, role)

        @self.app.delete("/{domain}/role/{role}/policy", response_model=List[PolicyResponse])
        async def remove_role_policy(domain: str, role: str, request: RolePolicyRequest = Body(...)):
            await self.admin.remove_policy(role, domain, request.object, request.action)
            return self._policies(domain, role)

        # Role members

        @self.app.get("/{domain}/role/{role}/subject", response_model=List[str])
        async def get_role_subjects(domain: str, role: str):
            """Direct members of the role."""
            return self.admin.list_subjects_for_role(domain, role)

        @self.app.post("/{domain}/role/{role}/subject", response_model=List[str])
        async def add_role_subject(domain: str, role: str, request: SubjectRequest):
            await self.admin.add_role_assignment(request.subject, role, domain)
            return self.admin.list_subjects_for_role(domain, role)

        @self.app.delete("/{domain}/role/{role}/subject", response_model=List[str])
        async def remove_role_subject(domain: str, role: str, request: SubjectRequest = Body(...)):
            await self.admin.remove_role_assignment(request.subject, role, domain)
            return self.admin.list_subjects_for_role(domain, role)

        @self.app.get("/{domain}/role/{role}/user", response_model=List[str])
        async def get_role_users(domain: str, role: str):
            """Users holding the role, directly or through nested roles."""
            return self.admin.list_users_for_role(domain, role)

        @self.app.post("/{domain}/role/{role}/user", response_model=List[str])
        async def add_role_user(domain: str, role: str, request: UserRequest):
            await self.admin.add_user_to_role(request.user, role, domain)
            return self.admin.list_users_for_role(domain, role)

        @self.app.delete("/{domain}/role/{role}/user", response_model=List[str])
        async def remove_role_user(domain: str, role: str, request: UserRequest = Body(...)):
            await self.admin.remove_role_assignment(request.user, role, domain)
            return self.admin.list_users_for_role(domain, role)

        # Subject roles

        @self.app.get("/{domain}/subject/{subject}/role", response_model=List[str])
        async def get_subject_roles(domain: str, subject: str):
            """Roles directly assigned to the subject."""
            return self.admin.list_roles_for_subject(domain, subject)

        @self.app.post("/{domain}/subject/{subject}/role", response_model=List[str])
        async def add_subject_role(domain: str, subject: str, request: RoleRequest):
            await self.admin.add_role_assignment(subject, request.role, domain)
            return self.admin.list_roles_for_subject(domain, subject)

        @self.app.delete("/{domain}/subject/{subject}/role", response_model=List[str])
        async def remove_subject_role(domain: str, subject: str, request: RoleRequest = Body(...)):
            await self.admin.remove_role_assignment(subject, request.role, domain)
            return self.admin.list_roles_for_subject(domain, subject)

        # Subdomains

        @self.app.get("/{domain}/subdomain", response_model=List[str])
        async def list_subdomains(domain: str):
            """Direct subdomains of the domain."""
            return self.admin.list_subdomains(domain)

        @self.app.get("/{domain}/subdomain/{subdomain}", response_model=List[SubdomainLinkResponse])
        async def get_subdomain_link(domain: str, subdomain: str):
            link = self.admin.get_subdomain_link(domain, subdomain)
            return [SubdomainLinkResponse.from_link(link)]

        @self.app.post("/{domain}/subdomain/{subdomain}", response_model=List[SubdomainLinkResponse])
        async def add_subdomain_link(domain: str, subdomain: str):
            await self.admin.add_subdomain_link(domain, subdomain)
            return self._links(domain)

        @self.app.delete("/{domain}/subdomain/{subdomain}", response_model=List[SubdomainLinkResponse])
        async def remove_subdomain_link(domain: str, subdomain: str):
            await self.admin.remove_subdomain_link(domain, subdomain)
            return self._links(domain)

    def _policies(self, domain: str, role: Optional[str] = None) -> List[PolicyResponse]:
        return [PolicyResponse.from_policy(p) for p in self.admin.list_policies(domain, role)]

    def _assignments(self, domain: str) -> List[RoleAssignmentResponse]:
        return [RoleAssignmentResponse.from_assignment(a) for a in self.admin.list_assignments(domain)]

    def _links(self, domain: str) -> List[SubdomainLinkResponse]:
        return [
            SubdomainLinkResponse(domain=domain, subdomain=child)
            for child in self.admin.list_subdomains(domain)
        ]

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check RBAC service dependencies."""
        try:
            healthy = await self.store.health_check()
        except Exception:
            healthy = False
        return {self.store.name: "ok" if healthy else "error"}

    async def start(self):
        """Start the tuple store and load the initial model.

        Any failure here aborts startup: without an initial load the
        service has no authoritative data to serve.
        """
        await self.store.start()
        graph = await self.reloader.reload()

        if self.config.rbac_reload_interval_seconds > 0:
            await self.reloader.start_periodic(self.config.rbac_reload_interval_seconds)

        self.logger.info(
            "RBAC service started",
            store=self.store.name,
            tuples=len(graph),
            port=self.config.port
        )

    async def stop(self):
        """Stop RBAC service components."""
        await self.reloader.stop()
        await self.store.stop()

        self.logger.info("RBAC service stopped")


def create_app():
    """Create RBAC service application."""
    service = RbacService()
    return service.app


if __name__ == "__main__":
    service = RbacService()
    service.run()
