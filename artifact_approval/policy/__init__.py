"""Policy module for approval decisions."""

from .auto_approve import AutoApproveDecision, evaluate, risk_at_or_below
from .capabilities import check_claim_capabilities, parse_roles, require_any_role

__all__ = [
    "AutoApproveDecision",
    "check_claim_capabilities",
    "evaluate",
    "parse_roles",
    "require_any_role",
    "risk_at_or_below",
]
