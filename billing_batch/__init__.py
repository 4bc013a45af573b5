"""
billing_batch -- Recurring billing passes.

Decides *when* a pass runs (recurrence + timer loop), drives the pending
invoice cursor through the payment attempt coordinator, and composes the
whole thing behind ``BillingOrchestrator``.

Architecture:
    billing_batch/ is a top-level package.  Nothing in billing_kernel/
    imports from billing_batch.

Invariants:
    - At most one in-flight attempt per invoice, guaranteed solely by the
      store's conditional transition.
    - The gateway is never called while a database transaction is open.
    - A failure while processing one invoice never ends the pass, and a
      failed pass never stops the timer loop.
    - Clock injection (no datetime.now() calls).
"""
