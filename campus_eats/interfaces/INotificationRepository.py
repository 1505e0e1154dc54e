from abc import ABC, abstractmethod
from typing import List, Optional

from campus_eats.domain.models import Notification


class INotificationRepository(ABC):
    @abstractmethod
    def add(self, notification: Notification) -> Notification:
        """Insert; if ``dedup_key`` already exists, return the stored row instead."""
        pass

    @abstractmethod
    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        pass

    @abstractmethod
    def unread_count(self, user_id: str) -> int:
        pass

    @abstractmethod
    def mark_read(self, notification_id: str, user_id: str) -> bool:
        """Only the owning user may mark a notification read."""
        pass

    @abstractmethod
    def get_by_id(self, notification_id: str) -> Optional[Notification]:
        pass
