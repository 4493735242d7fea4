"""
Immutable in-memory model of domains, roles, assignments and policies.

A ModelGraph is a snapshot: it is never modified after construction.
Every mutation returns a new graph (or the same instance when the
mutation is a no-op), so readers holding a reference always see one
complete, consistent version of the model.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from collections import OrderedDict

from shared.errors import CycleError, ValidationError
from .models import (
    Policy, RoleAssignment, SubdomainLink, TupleRecord,
    POLICY_TYPE, ROLE_ASSIGNMENT_TYPE, SUBDOMAIN_LINK_TYPE
)


def _unique(items: Iterable) -> Tuple:
    """Drop duplicates, keeping first-insertion order."""
    return tuple(OrderedDict.fromkeys(items))


class ModelGraph:
    """One consistent snapshot of the RBAC model."""

    __slots__ = (
        "_policies", "_assignments", "_links",
        "_policy_set", "_assignment_set", "_link_set",
        "_policies_by_domain", "_roles_by_subject", "_subjects_by_role",
        "_roles_by_domain", "_parents", "_children", "_domains",
    )

    def __init__(
        self,
        policies: Iterable[Policy] = (),
        assignments: Iterable[RoleAssignment] = (),
        links: Iterable[SubdomainLink] = (),
    ):
        self._policies: Tuple[Policy, ...] = _unique(policies)
        self._assignments: Tuple[RoleAssignment, ...] = _unique(assignments)
        self._links: Tuple[SubdomainLink, ...] = _unique(links)

        self._policy_set = frozenset(self._policies)
        self._assignment_set = frozenset(self._assignments)
        self._link_set = frozenset(self._links)

        policies_by_domain: Dict[str, List[Policy]] = {}
        roles_by_subject: Dict[Tuple[str, str], List[str]] = {}
        subjects_by_role: Dict[Tuple[str, str], List[str]] = {}
        roles_by_domain: Dict[str, List[str]] = {}
        parents: Dict[str, List[str]] = {}
        children: Dict[str, List[str]] = {}
        domains: List[str] = []

        for policy in self._policies:
            policies_by_domain.setdefault(policy.domain, []).append(policy)
            domains.append(policy.domain)

        for assignment in self._assignments:
            roles_by_subject.setdefault((assignment.domain, assignment.subject), []).append(assignment.role)
            subjects_by_role.setdefault((assignment.domain, assignment.role), []).append(assignment.subject)
            roles_by_domain.setdefault(assignment.domain, []).append(assignment.role)
            domains.append(assignment.domain)

        for link in self._links:
            parents.setdefault(link.child, []).append(link.parent)
            children.setdefault(link.parent, []).append(link.child)
            domains.append(link.parent)
            domains.append(link.child)

        self._policies_by_domain = policies_by_domain
        self._roles_by_subject = roles_by_subject
        self._subjects_by_role = subjects_by_role
        self._roles_by_domain = {d: _unique(r) for d, r in roles_by_domain.items()}
        self._parents = parents
        self._children = children
        self._domains = _unique(domains)

    @classmethod
    def from_tuples(cls, records: Iterable[TupleRecord]) -> "ModelGraph":
        """Build a snapshot from store records."""
        policies: List[Policy] = []
        assignments: List[RoleAssignment] = []
        links: List[SubdomainLink] = []

        for record in records:
            if record.ptype == POLICY_TYPE:
                policies.append(Policy(*record.values))
            elif record.ptype == ROLE_ASSIGNMENT_TYPE:
                assignments.append(RoleAssignment(*record.values))
            elif record.ptype == SUBDOMAIN_LINK_TYPE:
                links.append(SubdomainLink(*record.values))
            else:
                raise ValidationError(
                    f"Unknown tuple type '{record.ptype}'",
                    {"ptype": record.ptype}
                )

        return cls(policies, assignments, links)

    def to_tuples(self) -> List[TupleRecord]:
        """All tuples in store encoding, policies first."""
        records = [p.to_record() for p in self._policies]
        records.extend(a.to_record() for a in self._assignments)
        records.extend(link.to_record() for link in self._links)
        return records

    def __len__(self) -> int:
        return len(self._policies) + len(self._assignments) + len(self._links)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ModelGraph):
            return NotImplemented
        return (
            self._policy_set == other._policy_set
            and self._assignment_set == other._assignment_set
            and self._link_set == other._link_set
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"ModelGraph(policies={len(self._policies)}, "
            f"assignments={len(self._assignments)}, links={len(self._links)})"
        )

    # Policies

    def has_policy(self, policy: Policy) -> bool:
        return policy in self._policy_set

    def add_policy(self, role: str, domain: str, obj: str, action: str) -> "ModelGraph":
        """Insert the policy if absent; duplicates are a no-op."""
        policy = Policy(role, domain, obj, action)
        if policy in self._policy_set:
            return self
        return ModelGraph(self._policies + (policy,), self._assignments, self._links)

    def remove_policy(self, role: str, domain: str, obj: str, action: str) -> "ModelGraph":
        """Remove the policy if present; absent tuples are a no-op."""
        policy = Policy(role, domain, obj, action)
        if policy not in self._policy_set:
            return self
        return ModelGraph(
            (p for p in self._policies if p != policy),
            self._assignments,
            self._links
        )

    def list_policies(self, domain: str, role: Optional[str] = None) -> List[Policy]:
        """Policies in domain, optionally only those granted to role."""
        policies = self._policies_by_domain.get(domain, [])
        if role is None:
            return list(policies)
        return [p for p in policies if p.subject == role]

    # Role assignments

    def has_role_assignment(self, assignment: RoleAssignment) -> bool:
        return assignment in self._assignment_set

    def add_role_assignment(self, subject: str, role: str, domain: str) -> "ModelGraph":
        """Grant role to subject in domain; duplicates are a no-op."""
        assignment = RoleAssignment(subject, role, domain)
        if assignment in self._assignment_set:
            return self
        return ModelGraph(self._policies, self._assignments + (assignment,), self._links)

    def remove_role_assignment(self, subject: str, role: str, domain: str) -> "ModelGraph":
        """Revoke role from subject in domain; absent tuples are a no-op."""
        assignment = RoleAssignment(subject, role, domain)
        if assignment not in self._assignment_set:
            return self
        return ModelGraph(
            self._policies,
            (a for a in self._assignments if a != assignment),
            self._links
        )

    def list_subjects_for_role(self, domain: str, role: str) -> List[str]:
        """Direct members of role in domain (subjects and nested roles)."""
        return list(self._subjects_by_role.get((domain, role), []))

    def list_roles_for_subject(self, domain: str, subject: str) -> List[str]:
        """Roles directly assigned to subject in domain."""
        return list(self._roles_by_subject.get((domain, subject), []))

    def list_assignments(self, domain: str) -> List[RoleAssignment]:
        return [a for a in self._assignments if a.domain == domain]

    def is_role(self, domain: str, name: str) -> bool:
        """Whether name is used as a role by some assignment in domain."""
        return name in self._roles_by_domain.get(domain, ())

    def list_roles(self, domain: str) -> List[str]:
        """Role names in domain: assigned roles, then policy subjects."""
        names = list(self._roles_by_domain.get(domain, ()))
        names.extend(p.subject for p in self._policies_by_domain.get(domain, []))
        return list(_unique(names))

    def list_users_for_role(self, domain: str, role: str) -> List[str]:
        """Leaf principals holding role in domain, through nested roles."""
        users: List[str] = []
        visited: Set[str] = {role}
        queue: List[str] = [role]

        while queue:
            current = queue.pop(0)
            for member in self._subjects_by_role.get((domain, current), []):
                if member in visited:
                    continue
                visited.add(member)
                if self.is_role(domain, member):
                    queue.append(member)
                else:
                    users.append(member)

        return users

    # Domains

    def list_domains(self) -> List[str]:
        """Every domain referenced by at least one tuple."""
        return list(self._domains)

    def list_subdomains(self, domain: str) -> List[str]:
        """Direct subdomains (children) of domain."""
        return list(self._children.get(domain, []))

    def list_parent_domains(self, domain: str) -> List[str]:
        """Direct parents of domain."""
        return list(self._parents.get(domain, []))

    def has_subdomain_link(self, parent: str, child: str) -> bool:
        return SubdomainLink(child, parent) in self._link_set

    def ancestors(self, domain: str, include_self: bool = True) -> List[str]:
        """Domain plus every ancestor, nearest first.

        The visited set bounds the walk even if stored links are cyclic.
        """
        order: List[str] = [domain] if include_self else []
        visited: Set[str] = {domain}
        queue: List[str] = [domain]

        while queue:
            current = queue.pop(0)
            for parent in self._parents.get(current, []):
                if parent in visited:
                    continue
                visited.add(parent)
                order.append(parent)
                queue.append(parent)

        return order

    def add_subdomain_link(self, parent: str, child: str) -> "ModelGraph":
        """Make child a subdomain of parent.

        Raises CycleError when child is parent or already one of its
        ancestors.
        """
        link = SubdomainLink(child, parent)
        if link in self._link_set:
            return self
        if parent == child or child in self.ancestors(parent):
            raise CycleError(parent, child)
        return ModelGraph(self._policies, self._assignments, self._links + (link,))

    def remove_subdomain_link(self, parent: str, child: str) -> "ModelGraph":
        """Drop the link if present; absent links are a no-op."""
        link = SubdomainLink(child, parent)
        if link not in self._link_set:
            return self
        return ModelGraph(
            self._policies,
            self._assignments,
            (existing for existing in self._links if existing != link)
        )

    # Enforcement support

    def roles_for_subject_in(self, domains: Sequence[str], subject: str) -> Set[str]:
        """Every name reachable from subject through assignments in domains.

        Includes the subject itself. Role-to-role assignments expand
        transitively; visited (domain, name) pairs guard against cycles.
        """
        reached: Set[str] = {subject}
        visited: Set[Tuple[str, str]] = set()
        stack: List[Tuple[str, str]] = [(domain, subject) for domain in domains]

        while stack:
            domain, name = stack.pop()
            if (domain, name) in visited:
                continue
            visited.add((domain, name))
            for role in self._roles_by_subject.get((domain, name), []):
                reached.add(role)
                stack.append((domain, role))

        return reached
