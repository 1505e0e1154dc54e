from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from campus_eats.domain.models import Vendor


class IVendorRepository(ABC):
    @abstractmethod
    def create(self, user_id: str, name: str) -> Vendor:
        pass

    @abstractmethod
    def get_by_id(self, vendor_id: str) -> Optional[Vendor]:
        pass

    @abstractmethod
    def get_for_user(self, user_id: str) -> Optional[Vendor]:
        pass

    @abstractmethod
    def get_many(self, vendor_ids: Iterable[str]) -> List[Vendor]:
        pass

    @abstractmethod
    def set_active(self, vendor_id: str, is_active: bool) -> bool:
        pass
