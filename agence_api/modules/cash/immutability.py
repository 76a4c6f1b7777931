"""
Refus, au niveau de l'ORM, de toute modification ou suppression
d'une opération de caisse déjà enregistrée.
"""
import logging

from sqlalchemy import event, inspect

from agence_api.common.exceptions import ImmutableRecordError
from agence_api.modules.cash.models import Operation

logger = logging.getLogger(__name__)


def _check_operation_immutability(mapper, connection, target):
    state = inspect(target)
    changed = [
        attr.key for attr in mapper.column_attrs
        if attr.key != "updated_at" and state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        logger.error(f"Rejected update of operation {target.id}: {changed}")
        raise ImmutableRecordError(
            "Les opérations de caisse ne peuvent pas être modifiées",
            operation_id=target.id,
            fields=",".join(changed),
        )


def _check_operation_delete(mapper, connection, target):
    logger.error(f"Rejected delete of operation {target.id}")
    raise ImmutableRecordError(
        "Les opérations de caisse ne peuvent pas être supprimées",
        operation_id=target.id,
    )


def register_immutability_listeners():
    """Idempotent : les listeners ne sont enregistrés qu'une fois."""
    if not event.contains(Operation, "before_update", _check_operation_immutability):
        event.listen(Operation, "before_update", _check_operation_immutability)
    if not event.contains(Operation, "before_delete", _check_operation_delete):
        event.listen(Operation, "before_delete", _check_operation_delete)


register_immutability_listeners()
