"""Pick which claude.ai organization to poll for usage."""

from collections.abc import Callable, Sequence

from usage_relay.logger import get_logger
from usage_relay.models import OrganizationCandidate

log = get_logger("resolver")

# Capability token carried by organizations with Pro/Team usage quotas.
PREMIUM_CAPABILITY = "raven"


class NoCandidates(LookupError):
    """The organization listing was empty."""


def has_billing(org: OrganizationCandidate) -> bool:
    return bool(org.billing_type)


def has_tier(org: OrganizationCandidate) -> bool:
    return bool(org.raven_type)


def has_premium_capability(org: OrganizationCandidate) -> bool:
    return PREMIUM_CAPABILITY in org.capabilities


# Evaluated in order, each as a full pass over the candidates.
SELECTION_PASSES: tuple[tuple[str, Callable[[OrganizationCandidate], bool]], ...] = (
    ("billing", has_billing),
    ("tier", has_tier),
    ("capability", has_premium_capability),
)


def resolve_organization(candidates: Sequence[OrganizationCandidate]) -> str:
    if not candidates:
        raise NoCandidates("no organizations found")

    for reason, matches in SELECTION_PASSES:
        for org in candidates:
            if matches(org):
                log.info("organization_resolved", uuid=org.uuid, name=org.name, reason=reason)
                return org.uuid

    first = candidates[0]
    log.info("organization_resolved", uuid=first.uuid, name=first.name, reason="fallback")
    return first.uuid


class OrganizationCache:
    """Holds the resolved organization id until it is cleared."""

    def __init__(self, organization_id: str | None = None):
        self._organization_id = organization_id

    def get(self) -> str | None:
        return self._organization_id

    def set(self, organization_id: str):
        self._organization_id = organization_id

    def clear(self):
        if self._organization_id is not None:
            log.info("organization_cache_cleared", uuid=self._organization_id)
        self._organization_id = None
