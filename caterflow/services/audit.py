from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from caterflow.app.db.models.models_v1 import AuditLog

logger = logging.getLogger(__name__)


def log_interaction(
    db: Session,
    action: str,
    message: str,
    entity_type: str,
    entity_id: int | str | None,
    actor_id: int | None,
    success: bool = True,
) -> None:
    """Ligne d'audit ajoutée à la transaction de l'appelant, commitée avec elle."""
    db.add(
        AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else "N/A",
            message=message,
            success=success,
        )
    )
    logger.info("%s %s %s: %s", action, entity_type, entity_id, message)
