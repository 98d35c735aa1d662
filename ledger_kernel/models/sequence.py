"""
Sequence counter table.

Each row represents a named sequence with its current value.  Row-level
locking ensures monotonicity under concurrency.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """Current value of one named sequence (e.g. ``invoice:<business_id>``)."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
