"""
Tuple data models for the RBAC service.

Three tuple kinds make up the whole model:

- ``p``  Policy          (subject, domain, object, action)
- ``g``  RoleAssignment  (subject, role, domain)
- ``g2`` SubdomainLink   (child, parent)

Field order and arity are the persisted encoding shared by every tuple
store, so a file-backed and a database-backed deployment can trade data.
"""

from typing import Tuple
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from shared.errors import ValidationError


POLICY_TYPE = "p"
ROLE_ASSIGNMENT_TYPE = "g"
SUBDOMAIN_LINK_TYPE = "g2"

TUPLE_ARITY = {
    POLICY_TYPE: 4,
    ROLE_ASSIGNMENT_TYPE: 3,
    SUBDOMAIN_LINK_TYPE: 2,
}

# Widest tuple; stores with fixed columns pad to this
MAX_ARITY = max(TUPLE_ARITY.values())

# Characters with meaning in the CSV policy file encoding
_RESERVED_CHARS = frozenset(",\"")

# Top-level HTTP paths that a domain name would be shadowed by
RESERVED_DOMAINS = frozenset({
    "enforce", "reload", "domains", "health", "metrics", "docs", "redoc", "openapi.json",
})


class PersistOp(str, Enum):
    """Incremental store write operations."""
    ADD = "add"
    REMOVE = "remove"


def validate_identifier(field_name: str, value: object) -> str:
    """Reject empty or unencodable identifiers before any mutation."""
    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be a string",
            {"field": field_name}
        )
    if not value or value.strip() != value:
        raise ValidationError(
            f"{field_name} must be a non-empty identifier without surrounding whitespace",
            {"field": field_name, "value": value}
        )
    if any(ch in _RESERVED_CHARS or not ch.isprintable() for ch in value):
        raise ValidationError(
            f"{field_name} must not contain commas, quotes or control characters",
            {"field": field_name, "value": value}
        )
    return value


def validate_domain(field_name: str, value: object) -> str:
    """Identifier check plus rejection of names taken by fixed routes."""
    validate_identifier(field_name, value)
    if value in RESERVED_DOMAINS:
        raise ValidationError(
            f"{field_name} '{value}' is a reserved name",
            {"field": field_name, "value": value}
        )
    return value


@dataclass(frozen=True)
class TupleRecord:
    """A persisted tuple in store encoding."""
    ptype: str
    values: Tuple[str, ...]

    def __post_init__(self):
        arity = TUPLE_ARITY.get(self.ptype)
        if arity is None:
            raise ValidationError(
                f"Unknown tuple type '{self.ptype}'",
                {"ptype": self.ptype}
            )
        if len(self.values) != arity:
            raise ValidationError(
                f"Tuple type '{self.ptype}' takes {arity} fields, got {len(self.values)}",
                {"ptype": self.ptype, "values": list(self.values)}
            )
        for index, value in enumerate(self.values):
            validate_identifier(f"v{index}", value)

    @classmethod
    def from_row(cls, ptype: str, values) -> "TupleRecord":
        """Build from a padded row, dropping the unused trailing columns."""
        ptype = (ptype or "").strip()
        arity = TUPLE_ARITY.get(ptype, len(values))
        fields = tuple((v or "").strip() for v in values)
        if any(fields[arity:]):
            raise ValidationError(
                f"Tuple type '{ptype}' has extra fields",
                {"ptype": ptype, "values": list(fields)}
            )
        return cls(ptype, fields[:arity])

    def to_row(self) -> Tuple[str, ...]:
        """Values padded with empty strings to MAX_ARITY columns."""
        return self.values + ("",) * (MAX_ARITY - len(self.values))


@dataclass(frozen=True)
class Policy:
    """Permission tuple: subject (or role) may perform action on object in domain."""
    subject: str
    domain: str
    object: str
    action: str

    def to_record(self) -> TupleRecord:
        return TupleRecord(POLICY_TYPE, (self.subject, self.domain, self.object, self.action))


@dataclass(frozen=True)
class RoleAssignment:
    """Grant of role to subject within domain."""
    subject: str
    role: str
    domain: str

    def to_record(self) -> TupleRecord:
        return TupleRecord(ROLE_ASSIGNMENT_TYPE, (self.subject, self.role, self.domain))


@dataclass(frozen=True)
class SubdomainLink:
    """Directed child-of edge between two domains."""
    child: str
    parent: str

    def to_record(self) -> TupleRecord:
        return TupleRecord(SUBDOMAIN_LINK_TYPE, (self.child, self.parent))


# API models


class PolicyResponse(BaseModel):
    """Policy tuple as returned by the API."""
    domain: str
    subject: str
    object: str
    action: str

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyResponse":
        return cls(
            domain=policy.domain,
            subject=policy.subject,
            object=policy.object,
            action=policy.action
        )


class RoleAssignmentResponse(BaseModel):
    """Role assignment tuple as returned by the API."""
    domain: str
    subject: str
    role: str

    @classmethod
    def from_assignment(cls, assignment: RoleAssignment) -> "RoleAssignmentResponse":
        return cls(domain=assignment.domain, subject=assignment.subject, role=assignment.role)


class SubdomainLinkResponse(BaseModel):
    """Subdomain link as returned by the API."""
    domain: str
    subdomain: str

    @classmethod
    def from_link(cls, link: SubdomainLink) -> "SubdomainLinkResponse":
        return cls(domain=link.parent, subdomain=link.child)


class DomainPolicyRequest(BaseModel):
    """Request body for a direct policy in a domain."""
    subject: str = Field(..., description="Role or subject granted the permission")
    object: str = Field(..., description="Object")
    action: str = Field(..., description="Action")


class RolePolicyRequest(BaseModel):
    """Request body for a policy scoped by the role path segment."""
    object: str = Field(..., description="Object")
    action: str = Field(..., description="Action")


class RoleAssignmentRequest(BaseModel):
    """Request body for assigning a role in a domain."""
    subject: str = Field(..., description="Subject receiving the role")
    role: str = Field(..., description="Role")


class SubjectRequest(BaseModel):
    """Request body naming a subject."""
    subject: str = Field(..., description="Subject")


class UserRequest(BaseModel):
    """Request body naming a user principal."""
    user: str = Field(..., description="User")


class RoleRequest(BaseModel):
    """Request body naming a role."""
    role: str = Field(..., description="Role")


class EnforceResponse(BaseModel):
    """Enforcement decision."""
    allowed: bool


class ReloadResponse(BaseModel):
    """Result of a model reload."""
    reloaded: bool
    tuples: int
    duration_ms: float
