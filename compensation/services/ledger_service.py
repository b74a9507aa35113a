# compensation/services/ledger_service.py
"""
Default commission ledger: one row per commission in commission_ledger.

Writes go through their own short-lived session so a ledger failure never
touches the caller's transaction.
"""
from typing import Callable, List, Optional
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import SQLAlchemyError
import logging

from models.commission_ledger import CommissionLedgerEntry
from compensation.errors import DependencyUnavailable
from compensation.interfaces import Ledger
from compensation.types import CommissionEntry, CommissionKind

logger = logging.getLogger(__name__)


class DatabaseLedger(Ledger):

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def appendCommission(self, entry: CommissionEntry) -> None:
        """
        Raises:
            DependencyUnavailable: Write failed
        """
        session = self.session_factory()
        try:
            session.add(CommissionLedgerEntry(
                recipientUserID=entry.recipientUserId,
                kind=entry.kind.value,
                amount=entry.amount,
                sourceEvent=entry.sourceEvent,
                level=entry.level,
            ))
            session.commit()
            logger.debug(
                f"Ledger: {entry.kind.value} {entry.amount} to user {entry.recipientUserId} "
                f"({entry.sourceEvent})"
            )
        except SQLAlchemyError as e:
            session.rollback()
            raise DependencyUnavailable(f"Ledger append failed: {e}") from e
        finally:
            session.close()

    def getEntries(
            self,
            recipientUserId: Optional[int] = None,
            kind: Optional[CommissionKind] = None
    ) -> List[CommissionLedgerEntry]:
        session = self.session_factory()
        try:
            query = session.query(CommissionLedgerEntry)
            if recipientUserId is not None:
                query = query.filter_by(recipientUserID=recipientUserId)
            if kind is not None:
                query = query.filter_by(kind=kind.value)
            return query.order_by(CommissionLedgerEntry.entryID).all()
        finally:
            session.close()


def append_to_ledger(ledger: Optional[Ledger], entry: CommissionEntry) -> bool:
    """
    Fire-and-forget append used after the core has committed.

    Failures are logged and swallowed; retrying is the ledger's business.
    """
    if ledger is None:
        logger.debug(f"No ledger configured, dropping {entry.kind.value} for user {entry.recipientUserId}")
        return False

    try:
        ledger.appendCommission(entry)
        return True
    except Exception as e:
        logger.error(
            f"Ledger append failed for user {entry.recipientUserId} "
            f"({entry.kind.value} {entry.amount}, {entry.sourceEvent}): {e}",
            exc_info=True
        )
        return False


def default_ledger(session: Session) -> DatabaseLedger:
    """Ledger writing to the same database as `session`, through its own sessions."""
    return DatabaseLedger(sessionmaker(bind=session.get_bind()))
