"""
Auto-approve policy.

Decides whether a submitted artifact may bypass human review. The decision
is a pure function of the artifact's risk level, its AI confidence score and
the project's approval settings: no DB access and no ambient state, so the
same inputs always give the same answer.

Rules:
- auto_approve_enabled must be true
- the artifact's risk level must be at or below auto_approve_max_risk
  (low < medium < high < critical)
- ai_confidence_score must be >= auto_approve_min_confidence; a missing
  score counts as 0
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel

from ..enums import RiskLevel
from ..schemas import ProjectApprovalSettings


class AutoApproveDecision(BaseModel):
    """Outcome of the auto-approve policy.

    Attributes:
        approved: whether human review is bypassed
        code: stable code describing which rule decided the outcome
        reason: human-readable explanation, stored on the workflow when approved
    """

    approved: bool
    code: str
    reason: str


def risk_at_or_below(
    risk_level: Union[RiskLevel, str], ceiling: Union[RiskLevel, str]
) -> bool:
    """Whether ``risk_level`` is no riskier than ``ceiling``."""
    return RiskLevel(risk_level).rank <= RiskLevel(ceiling).rank


def _format_confidence(value: float) -> str:
    return f"{value:g}%"


def evaluate(
    risk_level: Union[RiskLevel, str],
    ai_confidence_score: Optional[float],
    settings: ProjectApprovalSettings,
) -> AutoApproveDecision:
    """
    Evaluate the auto-approve policy.

    Args:
        risk_level: Risk level assigned to the artifact at creation
        ai_confidence_score: Producer confidence (0-100) or None
        settings: The project's resolved approval settings

    Returns:
        An AutoApproveDecision; ``approved`` is True only when every rule passes
    """
    risk = RiskLevel(risk_level)
    ceiling = RiskLevel(settings.auto_approve_max_risk)
    confidence = float(ai_confidence_score) if ai_confidence_score is not None else 0.0
    minimum = float(settings.auto_approve_min_confidence)

    if not settings.auto_approve_enabled:
        return AutoApproveDecision(
            approved=False,
            code="AUTO_APPROVE_DISABLED",
            reason="Auto-approve is disabled for this project",
        )

    if not risk_at_or_below(risk, ceiling):
        return AutoApproveDecision(
            approved=False,
            code="RISK_TOO_HIGH",
            reason=f"Risk {risk.value} exceeds auto-approve maximum {ceiling.value}",
        )

    if confidence < minimum:
        return AutoApproveDecision(
            approved=False,
            code="CONFIDENCE_TOO_LOW",
            reason=f"Confidence {_format_confidence(confidence)} is below "
            f"auto-approve minimum {_format_confidence(minimum)}",
        )

    return AutoApproveDecision(
        approved=True,
        code="AUTO_APPROVED",
        reason=f"Auto-approved: risk {risk.value} <= {ceiling.value}, "
        f"confidence {_format_confidence(confidence)} >= {_format_confidence(minimum)}",
    )
