"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Common constructor and session contract.  Services receive a SQLAlchemy
    ``Session`` and persist with ``session.flush()``; they never commit or
    roll back.

Architecture position:
    Kernel > Services.  LedgerStore and ItemRegistry extend this class.

Invariants enforced:
    - Transaction boundaries belong to the caller (StockPostingService,
      session_scope(), or the test harness).  A service flushes within the
      caller's transaction so multi-row documents commit or vanish together.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
