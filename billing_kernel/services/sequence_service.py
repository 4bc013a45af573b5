"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for audit
    events.  A dedicated counter table is incremented with a single atomic
    ``UPDATE ... SET current_value = current_value + 1``, which also takes
    the row's write lock for the rest of the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by AuditorService before it reads the chain tip, so the chain tip
    read happens under the lock and two writers can never link to the same
    previous hash.

Invariants enforced:
    - Sequences are strictly monotonic.  ``MAX(seq) + 1`` is never used;
      the counter row is the sole source of truth.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: two first-time allocations racing to create the same
      counter row.  ``initialize_sequences()`` (run by ``create_tables``)
      pre-creates the well-known counters so this cannot happen in normal
      operation.
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Named sequence with its current value."""

    __tablename__ = "sequence_counters"

    # e.g. "audit_event"
    name: Mapped[str] = mapped_column(String(50), primary_key=True)

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).next_value(SequenceService.AUDIT_EVENT)
    """

    AUDIT_EVENT = "audit_event"

    WELL_KNOWN = (AUDIT_EVENT,)

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Increment and return the named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              committed value for this sequence.
            - The counter row stays write-locked until the caller's
              transaction ends.
        """
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            # First use of an uninitialised sequence.
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
            value = 1
        else:
            value = self._session.execute(
                select(SequenceCounter.current_value)
                .where(SequenceCounter.name == sequence_name)
            ).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def initialize_sequences(self) -> None:
        """
        Create the well-known counters at zero if they do not exist.

        Called during database setup.
        """
        for name in self.WELL_KNOWN:
            existing = self._session.get(SequenceCounter, name)
            if existing is None:
                self._session.add(SequenceCounter(name=name, current_value=0))

        self._session.flush()
