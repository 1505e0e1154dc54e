"""
Great-circle distance and delivery ETA.

The ETA is a read-time calculation from the runner's last known position to
the fixed delivery point; it is never persisted. Missing coordinates give an
indeterminate estimate, never zero.
"""
import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_KM = 6371.0
DEFAULT_SPEED_KMH = 20.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: Optional[float] = None
    minutes: Optional[int] = None

    @property
    def indeterminate(self) -> bool:
        return self.minutes is None

    def to_dict(self) -> dict:
        return {
            "distance_km": self.distance_km,
            "minutes": self.minutes,
            "indeterminate": self.indeterminate,
        }


INDETERMINATE = EtaEstimate()


def estimate_eta(
    runner_lat: Optional[float],
    runner_lng: Optional[float],
    delivery_lat: Optional[float],
    delivery_lng: Optional[float],
    speed_kmh: float = DEFAULT_SPEED_KMH,
) -> EtaEstimate:
    if None in (runner_lat, runner_lng, delivery_lat, delivery_lng):
        return INDETERMINATE
    if speed_kmh <= 0:
        raise ValueError("speed_kmh must be positive")
    distance = haversine_km(runner_lat, runner_lng, delivery_lat, delivery_lng)
    return EtaEstimate(distance_km=distance, minutes=math.ceil(distance / speed_kmh * 60))


def eta_for_order(order, speed_kmh: float = DEFAULT_SPEED_KMH) -> EtaEstimate:
    return estimate_eta(order.runner_lat, order.runner_lng, order.delivery_lat, order.delivery_lng, speed_kmh)
