import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from campus_eats.core.error_classifier import normalize
from campus_eats.domain.models import Notification
from campus_eats.infrastructure.database import SessionLocal
from campus_eats.interfaces.INotificationRepository import INotificationRepository

logger = logging.getLogger(__name__)


class SqlAlchemyNotificationRepository(INotificationRepository):

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def add(self, notification: Notification) -> Notification:
        session = self.session_factory()
        try:
            session.add(notification)
            session.commit()
            return notification
        except IntegrityError as e:
            session.rollback()
            if notification.dedup_key:
                existing = (
                    session.query(Notification)
                    .filter(Notification.dedup_key == notification.dedup_key)
                    .first()
                )
                if existing is not None:
                    return existing
            raise normalize(e) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ DB Error saving notification: {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def get_by_id(self, notification_id: str) -> Optional[Notification]:
        session = self.session_factory()
        try:
            return session.get(Notification, notification_id)
        except SQLAlchemyError as e:
            raise normalize(e) from e
        finally:
            session.close()

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        session = self.session_factory()
        try:
            query = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                query = query.filter(Notification.read.is_(False))
            return query.order_by(desc(Notification.created_at)).limit(limit).all()
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (notifications for {user_id}): {e}")
            raise normalize(e) from e
        finally:
            session.close()

    def unread_count(self, user_id: str) -> int:
        session = self.session_factory()
        try:
            return (
                session.query(Notification)
                .filter(Notification.user_id == user_id, Notification.read.is_(False))
                .count()
            )
        except SQLAlchemyError as e:
            raise normalize(e) from e
        finally:
            session.close()

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        session = self.session_factory()
        try:
            rows = (
                session.query(Notification)
                .filter(Notification.id == notification_id, Notification.user_id == user_id)
                .update({Notification.read: True}, synchronize_session=False)
            )
            session.commit()
            return rows == 1
        except SQLAlchemyError as e:
            session.rollback()
            raise normalize(e) from e
        finally:
            session.close()
