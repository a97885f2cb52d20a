"""
Workflow d'approbation commun aux transferts internes et aux ajustements.

    draft -> pending-approval -> approved -> completed
                 pending-approval -> rejected
    draft / pending-approval / approved -> cancelled

Seuls les documents `completed` sont vus par le moteur de stock.
"""

from __future__ import annotations

from datetime import datetime

from caterflow.app.db.models.core_types import ApprovalStatus

EDITABLE_STATUSES = {
    ApprovalStatus.draft,
    ApprovalStatus.pending_approval,
    ApprovalStatus.approved,
}

TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    ApprovalStatus.pending_approval: {ApprovalStatus.draft},
    ApprovalStatus.approved: {ApprovalStatus.pending_approval},
    ApprovalStatus.rejected: {ApprovalStatus.pending_approval},
    ApprovalStatus.completed: {ApprovalStatus.approved},
    ApprovalStatus.cancelled: EDITABLE_STATUSES,
}


class WorkflowError(Exception):
    pass


def check_transition(current: ApprovalStatus, target: ApprovalStatus) -> None:
    allowed_from = TRANSITIONS.get(target, set())
    if current not in allowed_from:
        raise WorkflowError(f"Cannot move from {current.value} to {target.value}")


def check_editable(current: ApprovalStatus) -> None:
    if current not in EDITABLE_STATUSES:
        raise WorkflowError(f"Cannot edit a document with status: {current.value}")


def advance(doc, target: ApprovalStatus, actor_id: int, now: datetime) -> None:
    """
    Passe un transfert / ajustement à `target` et horodate l'approbation ou
    la complétion. WorkflowError si la transition est interdite.
    """
    check_transition(doc.status, target)
    doc.status = target
    if target in (ApprovalStatus.approved, ApprovalStatus.rejected):
        doc.approved_by = actor_id
        doc.approved_at = now
    elif target == ApprovalStatus.completed:
        doc.completed_at = now
