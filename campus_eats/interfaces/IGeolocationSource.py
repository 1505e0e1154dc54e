from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional, Union


@dataclass(frozen=True)
class WatchOptions:
    high_accuracy: bool = True
    maximum_age_ms: int = 0  # never accept cached positions
    timeout_ms: Optional[int] = 5000


@dataclass(frozen=True)
class PositionSample:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PositionError:
    code: str
    message: str


PositionReading = Union[PositionSample, PositionError]


class IGeolocationSource(ABC):
    @abstractmethod
    def watch(self, options: WatchOptions) -> AsyncIterator[PositionReading]:
        """Continuous watch; yields samples or errors until ``clear_watch``."""
        pass

    @abstractmethod
    async def clear_watch(self) -> None:
        pass
