"""
Entity loading and per-entity compare-and-swap updates.
"""

from typing import Any, Dict, Type
import logging

from sqlmodel import Session

from brokerdesk.errors import NotFound, Conflict

logger = logging.getLogger("brokerdesk")


def load_for_update(db_session: Session, model: Type, entity_id: int, label: str) -> Any:
    """
    Load one row with a row lock (ignored by SQLite).

    Raises:
        NotFound: No row with this id
    """
    entity = db_session.query(model).filter(model.id == entity_id).with_for_update().first()
    if entity is None:
        raise NotFound(f"{label} not found", entity=label, id=entity_id)
    return entity


def compare_and_set(
    db_session: Session,
    entity: Any,
    field: str,
    expected: Any,
    values: Dict[str, Any],
    label: str,
) -> Any:
    """
    Apply ``values`` only if ``field`` still holds ``expected``.

    Two concurrent transitions on the same entity cannot both pass: the
    loser's UPDATE matches no row and raises Conflict.

    Returns:
        The refreshed entity
    """
    model = type(entity)
    column = getattr(model, field)
    condition = column.is_(None) if expected is None else column == expected

    updated = db_session.query(model).filter(
        model.id == entity.id,
        condition
    ).update(values, synchronize_session=False)

    if updated != 1:
        logger.warning(
            f"Concurrent modification | entity={label} | id={entity.id} | "
            f"field={field} | expected={expected}"
        )
        raise Conflict(
            f"{label} was modified concurrently",
            entity=label,
            id=entity.id,
            field=field,
            expected=expected,
        )

    db_session.refresh(entity)
    return entity
