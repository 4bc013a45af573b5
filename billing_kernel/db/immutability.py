"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity           | When Immutable          | Why
-----------------|-------------------------|-------------------------------------
FailedBilling    | ALWAYS (from creation)  | Failure history is append-only
AuditEvent       | ALWAYS (from creation)  | Audit trail is append-only

Invoices are NOT protected here: their status changes through
InvoiceStateStore's conditional Core UPDATE, which never loads the row.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE operations reach the
database:

    session.flush()
         |
         v
    [before_update event] --> _reject_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _reject_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails the flush aborts and the caller's transaction rolls back.
Raw SQL bypasses these listeners.

===============================================================================
USAGE
===============================================================================

Called once during application startup (BillingOrchestrator.from_config):

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _entity_name(target) -> str:
    return type(target).__name__.removesuffix("Model")


def _reject_update(mapper, connection, target):
    """Prevent any updates to append-only records."""
    entity_type = _entity_name(target)
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be modified",
    )


def _reject_delete(mapper, connection, target):
    """Prevent deletion of append-only records."""
    entity_type = _entity_name(target)
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records cannot be deleted",
    )


def _append_only_models():
    from billing_kernel.models.audit_event import AuditEvent
    from billing_kernel.models.failed_billing import FailedBillingModel

    return (FailedBillingModel, AuditEvent)


def register_immutability_listeners() -> None:
    """
    Register the append-only enforcement listeners.

    Idempotent: listeners already registered are not added twice.
    """
    for model in _append_only_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    for model in _append_only_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
