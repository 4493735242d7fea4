"""
Enforcement engine for the RBAC service.
"""

import time
from typing import Callable, List, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .graph import ModelGraph
from .models import Policy


def resolve_domains(graph: ModelGraph, domain: str) -> List[str]:
    """The request domain followed by all of its ancestors."""
    return graph.ancestors(domain, include_self=True)


def resolve_subjects(graph: ModelGraph, domains: List[str], subject: str) -> Set[str]:
    """The literal subject plus every role it reaches in the searched domains."""
    return graph.roles_for_subject_in(domains, subject)


class EnforcementEngine:
    """Answers (subject, domain, object, action) questions over a snapshot.

    The engine never raises: malformed input or any failure during
    resolution denies the request.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], ModelGraph],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.logger = get_logger("rbac.engine")
        self._snapshot_provider = snapshot_provider
        self.metrics = metrics

    def enforce(
        self,
        subject: str,
        domain: str,
        obj: str,
        action: str,
        snapshot: Optional[ModelGraph] = None,
    ) -> bool:
        """Whether subject may perform action on obj within domain."""
        start_time = time.time()
        matched = self.explain(subject, domain, obj, action, snapshot=snapshot)
        allowed = matched is not None

        if self.metrics:
            self.metrics.increment_counter(
                "rbac_enforce_total",
                decision="allow" if allowed else "deny"
            )
            self.metrics.observe_histogram("rbac_enforce_duration_seconds", time.time() - start_time)

        self.logger.debug(
            "Enforcement decision",
            subject=subject,
            domain=domain,
            object=obj,
            action=action,
            allowed=allowed,
            matched=matched.subject if matched else None,
            matched_domain=matched.domain if matched else None
        )
        return allowed

    def explain(
        self,
        subject: str,
        domain: str,
        obj: str,
        action: str,
        snapshot: Optional[ModelGraph] = None,
    ) -> Optional[Policy]:
        """The first policy granting the request, or None when denied."""
        # Capture the snapshot once; a concurrent publish must not change
        # what this call sees halfway through.
        graph = snapshot if snapshot is not None else self._snapshot_provider()

        try:
            for value in (subject, domain, obj, action):
                if not isinstance(value, str) or not value:
                    return None

            domains = resolve_domains(graph, domain)
            subjects = sorted(resolve_subjects(graph, domains, subject))

            for searched in domains:
                for name in subjects:
                    policy = Policy(name, searched, obj, action)
                    if graph.has_policy(policy):
                        return policy

            return None

        except Exception as e:
            self.logger.error(
                "Enforcement resolution error",
                subject=subject,
                domain=domain,
                error=str(e)
            )
            return None
