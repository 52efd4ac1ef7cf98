"""
Reviewer capability checks.

The engine only stores ``requires_admin`` / ``requires_lead`` on a workflow;
deciding whether a caller may act on them is the API layer's job. These
helpers compare the caller's role set with those flags.

- any reviewer operation needs one of: admin, lead, qae
- a workflow with requires_admin can only be claimed by an admin
- a workflow with requires_lead can only be claimed by a lead or an admin
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List

from ..enums import ReviewerRole
from ..errors import PermissionDenied

REVIEWER_ROLES: FrozenSet[str] = frozenset(r.value for r in ReviewerRole)
SETTINGS_ROLES: FrozenSet[str] = frozenset(
    {ReviewerRole.ADMIN.value, ReviewerRole.LEAD.value}
)


def parse_roles(raw: str) -> FrozenSet[str]:
    """
    Parse a comma-separated role header.

    Examples:
        "admin,lead" -> {"admin", "lead"}
        " QAE " -> {"qae"}
        "" -> set()
    """
    if not raw or not raw.strip():
        return frozenset()
    return frozenset(role.strip().lower() for role in raw.split(",") if role.strip())


def require_any_role(roles: Iterable[str], allowed: FrozenSet[str]) -> None:
    """Raise PermissionDenied unless ``roles`` intersects ``allowed``."""
    if not set(roles) & allowed:
        raise PermissionDenied(
            f"One of the roles {', '.join(sorted(allowed))} is required"
        )


def missing_claim_capabilities(
    roles: Iterable[str], requires_admin: bool, requires_lead: bool
) -> List[str]:
    """Return the capabilities the caller lacks to claim a workflow."""
    roles = set(roles)
    missing: List[str] = []
    if not roles & REVIEWER_ROLES:
        missing.append("reviewer")
    if requires_admin and ReviewerRole.ADMIN.value not in roles:
        missing.append("admin")
    if requires_lead and not roles & SETTINGS_ROLES:
        missing.append("lead")
    return missing


def check_claim_capabilities(
    roles: Iterable[str], requires_admin: bool, requires_lead: bool
) -> None:
    """Raise PermissionDenied when the caller may not claim the workflow."""
    missing = missing_claim_capabilities(roles, requires_admin, requires_lead)
    if missing:
        raise PermissionDenied(
            f"Missing capabilities to claim this artifact: {', '.join(missing)}",
            details={"missing": missing},
        )
