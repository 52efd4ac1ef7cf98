"""
Artifact state machine.

The transition table is the single authority on which event may fire from
which state. It performs no I/O: callers look up the target state here,
before touching storage, and apply it with a compare-and-set update.

    draft           --submit-------------> pending_review
    draft           --auto_approve-------> approved
    pending_review  --claim--------------> in_review
    in_review       --approve------------> approved        (quota met)
    in_review       --partial_approve----> pending_review  (quota not met)
    in_review       --reject-------------> rejected
    rejected        --revise-------------> archived        (new draft version)
    <archivable>    --archive------------> archived
    draft           --update-------------> draft
    draft, archived --delete-------------> (removed)

Archivable states default to ``{approved}`` and may be widened to ``draft``
and ``rejected`` through the ``ARCHIVABLE_STATES`` setting.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .config import get_settings, parse_state_list
from .enums import ArtifactState, WorkflowEvent
from .errors import ValidationError

S = ArtifactState
E = WorkflowEvent

BASE_TRANSITIONS: Dict[Tuple[ArtifactState, WorkflowEvent], ArtifactState] = {
    (S.DRAFT, E.SUBMIT): S.PENDING_REVIEW,
    (S.DRAFT, E.AUTO_APPROVE): S.APPROVED,
    (S.PENDING_REVIEW, E.CLAIM): S.IN_REVIEW,
    (S.IN_REVIEW, E.APPROVE): S.APPROVED,
    (S.IN_REVIEW, E.PARTIAL_APPROVE): S.PENDING_REVIEW,
    (S.IN_REVIEW, E.REJECT): S.REJECTED,
    (S.REJECTED, E.REVISE): S.ARCHIVED,
    (S.DRAFT, E.UPDATE): S.DRAFT,
}

DELETABLE_STATES: FrozenSet[ArtifactState] = frozenset({S.DRAFT, S.ARCHIVED})

# States that may ever be configured as archivable
ARCHIVABLE_CANDIDATES: FrozenSet[ArtifactState] = frozenset(
    {S.APPROVED, S.DRAFT, S.REJECTED}
)
DEFAULT_ARCHIVABLE_STATES: FrozenSet[ArtifactState] = frozenset({S.APPROVED})

REVIEW_QUEUE_STATES: FrozenSet[ArtifactState] = frozenset(
    {S.PENDING_REVIEW, S.IN_REVIEW}
)


class ArtifactStateMachine:
    """Transition table plus the archive/delete policies."""

    def __init__(self, archivable_states: Optional[Iterable[ArtifactState]] = None):
        states = (
            frozenset(ArtifactState(s) for s in archivable_states)
            if archivable_states is not None
            else DEFAULT_ARCHIVABLE_STATES
        )
        not_allowed = states - ARCHIVABLE_CANDIDATES
        if not_allowed:
            raise ValueError(
                "States cannot be archivable: "
                + ", ".join(sorted(s.value for s in not_allowed))
            )

        self.archivable_states = states
        self._transitions = dict(BASE_TRANSITIONS)
        for state in states:
            self._transitions[(state, E.ARCHIVE)] = S.ARCHIVED

    @classmethod
    def from_settings(cls) -> "ArtifactStateMachine":
        """Build a machine using the configured archivable states."""
        raw = parse_state_list(get_settings().archivable_states)
        return cls(archivable_states=[ArtifactState(s) for s in raw])

    def can(self, state: ArtifactState, event: WorkflowEvent) -> bool:
        """Whether ``event`` has an edge out of ``state``."""
        state, event = ArtifactState(state), WorkflowEvent(event)
        if event is E.DELETE:
            return state in DELETABLE_STATES
        return (state, event) in self._transitions

    def allowed_events(self, state: ArtifactState) -> List[WorkflowEvent]:
        """Events that may fire from ``state``, in declaration order."""
        return [event for event in WorkflowEvent if self.can(state, event)]

    def transition(
        self, state: ArtifactState, event: WorkflowEvent
    ) -> Optional[ArtifactState]:
        """Return the state reached by firing ``event`` from ``state``.

        Delete has no target state and returns None.

        Raises:
            ValidationError: the event has no edge out of ``state``.
        """
        state, event = ArtifactState(state), WorkflowEvent(event)
        if not self.can(state, event):
            raise ValidationError(
                f"Invalid state transition: cannot {event.value} an artifact "
                f"in state '{state.value}'",
                details={
                    "from_state": state.value,
                    "event": event.value,
                    "allowed_events": [e.value for e in self.allowed_events(state)],
                },
            )
        if event is E.DELETE:
            return None
        return self._transitions[(state, event)]
