import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from campus_eats.core.error_classifier import normalize
from campus_eats.domain.errors import InvalidRequest
from campus_eats.domain.models import Vendor
from campus_eats.infrastructure.database import SessionLocal
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)


class SqlAlchemyVendorRepository(IVendorRepository):

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def create(self, user_id: str, name: str) -> Vendor:
        session = self.session_factory()
        try:
            vendor = Vendor(user_id=user_id, name=name, is_active=True)
            session.add(vendor)
            session.commit()
            logger.info(f"✅ Vendor '{name}' registered for user {user_id}")
            return vendor
        except IntegrityError as e:
            session.rollback()
            raise InvalidRequest("This account already owns a vendor") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise normalize(e) from e
        finally:
            session.close()

    def get_by_id(self, vendor_id: str) -> Optional[Vendor]:
        session = self.session_factory()
        try:
            return session.get(Vendor, vendor_id)
        except SQLAlchemyError as e:
            raise normalize(e) from e
        finally:
            session.close()

    def get_for_user(self, user_id: str) -> Optional[Vendor]:
        session = self.session_factory()
        try:
            return session.query(Vendor).filter(Vendor.user_id == user_id).first()
        except SQLAlchemyError as e:
            raise normalize(e) from e
        finally:
            session.close()

    def get_many(self, vendor_ids: Iterable[str]) -> List[Vendor]:
        ids = list(vendor_ids)
        if not ids:
            return []
        session = self.session_factory()
        try:
            return session.query(Vendor).filter(Vendor.id.in_(ids)).all()
        except SQLAlchemyError as e:
            raise normalize(e) from e
        finally:
            session.close()

    def set_active(self, vendor_id: str, is_active: bool) -> bool:
        session = self.session_factory()
        try:
            rows = (
                session.query(Vendor)
                .filter(Vendor.id == vendor_id)
                .update({Vendor.is_active: is_active}, synchronize_session=False)
            )
            session.commit()
            return rows == 1
        except SQLAlchemyError as e:
            session.rollback()
            raise normalize(e) from e
        finally:
            session.close()
