"""Soft-delete cascade rules and the runner that applies them.

Deactivating an entity is two steps: the primary write (is_active=False)
and one bulk update per declared child rule. The primary write is committed
first; a failing child step raises PartialFailureError. Both steps are
idempotent, so re-running `deactivate` on an already inactive entity
finishes an interrupted cascade.
"""
import enum
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import PartialFailureError

logger = logging.getLogger("taskhub-core.cascade")


class CascadeAction(str, enum.Enum):
    """What happens to children when their parent is deactivated."""

    DEACTIVATE = "deactivate"  # child.is_active = False
    DETACH = "detach"          # child.<foreign key> = NULL


@dataclass(frozen=True)
class CascadeRule:
    child: type
    foreign_key: str
    action: CascadeAction

    @property
    def step(self) -> str:
        return f"{self.action.value}:{self.child.__tablename__}.{self.foreign_key}"


# Parent model → rules applied on deactivation
CASCADE_RULES: dict[type, list[CascadeRule]] = {
    models.Project: [
        CascadeRule(models.Task, "project_id", CascadeAction.DEACTIVATE),
    ],
    models.Sprint: [
        CascadeRule(models.Task, "sprint_id", CascadeAction.DETACH),
    ],
}


def _apply_rule(db: Session, rule: CascadeRule, parent_id) -> int:
    column = getattr(rule.child, rule.foreign_key)
    stmt = update(rule.child).where(column == parent_id)

    if rule.action == CascadeAction.DEACTIVATE:
        stmt = stmt.values(is_active=False, updated_at=models.utcnow())
    elif rule.action == CascadeAction.DETACH:
        stmt = stmt.values({rule.foreign_key: None, "updated_at": models.utcnow()})
    else:
        raise ValueError(f"Unknown cascade action: {rule.action}")

    result = db.execute(stmt.execution_options(synchronize_session="fetch"))
    return result.rowcount


def deactivate(db: Session, entity) -> dict[str, int]:
    """
    Soft-delete an entity and run its cascade rules.

    Args:
        db: Database session
        entity: Project or Sprint instance (active or already inactive)

    Returns:
        Mapping of cascade step → affected row count

    Raises:
        PartialFailureError: If a cascade step fails after the primary write
    """
    entity_type = type(entity).__name__

    if entity.is_active:
        entity.is_active = False
        db.commit()
        logger.info(f"Deactivated {entity_type} {entity.id}")
    else:
        logger.info(f"{entity_type} {entity.id} already inactive, re-running cascade")

    affected: dict[str, int] = {}
    for rule in CASCADE_RULES.get(type(entity), []):
        try:
            affected[rule.step] = _apply_rule(db, rule, entity.id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Cascade step {rule.step} failed for {entity_type} {entity.id}: {e}",
                exc_info=True,
            )
            raise PartialFailureError(
                f"{entity_type} was deactivated but cascade step '{rule.step}' failed; "
                f"retry the delete to complete it",
                entity_type=entity_type,
                entity_id=entity.id,
                failed_step=rule.step,
            ) from e
        logger.debug(f"Cascade step {rule.step} affected {affected[rule.step]} rows")

    return affected
