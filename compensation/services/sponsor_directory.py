# compensation/services/sponsor_directory.py
"""
Database-backed sponsor directory (sponsor_links table).
"""
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from models.sponsor_link import SponsorLink
from compensation.errors import DependencyUnavailable
from compensation.interfaces import SponsorDirectory

logger = logging.getLogger(__name__)


class DatabaseSponsorDirectory(SponsorDirectory):
    """Referral links as stored by the user registration flow."""

    def __init__(self, session: Session):
        self.session = session

    def getSponsor(self, userId: int) -> Optional[int]:
        try:
            link = self.session.query(SponsorLink).filter_by(userID=userId).first()
        except SQLAlchemyError as e:
            logger.error(f"Sponsor lookup for user {userId} failed: {e}", exc_info=True)
            raise DependencyUnavailable(f"Sponsor directory unavailable: {e}") from e

        return link.sponsorUserID if link else None

    def setSponsor(self, userId: int, sponsorUserId: Optional[int]) -> SponsorLink:
        """Create or update a referral link. Caller commits."""
        if sponsorUserId == userId:
            raise ValueError(f"User {userId} cannot sponsor themselves")

        link = self.session.query(SponsorLink).filter_by(userID=userId).first()
        if link is None:
            link = SponsorLink(userID=userId)
            self.session.add(link)

        link.sponsorUserID = sponsorUserId
        self.session.flush()
        return link
