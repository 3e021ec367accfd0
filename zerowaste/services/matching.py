# zerowaste/services/matching.py
from math import atan2, cos, isfinite, radians, sin
from typing import Any, Dict, Iterable, List, Optional, Tuple

from zerowaste.core.config import settings
from zerowaste.models.schemas import DonationStatus, Role, UserStatus

EARTH_RADIUS_KM = 6371.0


def haversine(a: dict, b: dict) -> float:
    """
    a, b: dicts like {"lat": float, "lng": float}
    returns distance in km
    """
    dlat = radians(b["lat"] - a["lat"])
    dlon = radians(b["lng"] - a["lng"])
    s = sin(dlat/2)**2 + cos(radians(a["lat"])) * cos(radians(b["lat"])) * sin(dlon/2)**2
    s = min(1.0, s)
    return 2 * EARTH_RADIUS_KM * atan2(s**0.5, (1 - s)**0.5)


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return haversine({"lat": lat1, "lng": lng1}, {"lat": lat2, "lng": lng2})


def _as_dict(candidate: Any) -> Dict[str, Any]:
    if hasattr(candidate, "model_dump"):
        return candidate.model_dump()
    return dict(candidate)


def coordinates(candidate: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """(lat, lng) of a candidate, or None when missing or bogus."""
    loc = candidate.get("location") or candidate.get("coordinates") or candidate
    if not isinstance(loc, dict):
        return None
    lat, lng = loc.get("lat"), loc.get("lng")
    if isinstance(lat, bool) or isinstance(lng, bool):
        return None
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return None
    if not (isfinite(lat) and isfinite(lng)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    # [0,0] is what unset locations get defaulted to
    if lat == 0.0 and lng == 0.0:
        return None
    return lat, lng


def find_nearby(candidates: Iterable[Any], origin_lat: float, origin_lng: float,
                radius_km: Optional[float] = None) -> List[Dict[str, Any]]:
    """
    Candidates within radius_km of the origin, nearest first, each returned as a
    dict with a "distance_km" field attached.
    """
    if radius_km is None:
        radius_km = settings.matching_radius_km
    origin = {"lat": float(origin_lat), "lng": float(origin_lng)}
    out = []
    for c in candidates:
        doc = _as_dict(c)
        coords = coordinates(doc)
        if coords is None:
            continue
        d = haversine(origin, {"lat": coords[0], "lng": coords[1]})
        if d <= radius_km:
            doc["distance_km"] = d
            out.append(doc)
    out.sort(key=lambda x: x["distance_km"])
    return out


class GeoMatcher:
    """Nearby NGOs, volunteers and donations around a point."""

    def __init__(self, repo, default_radius_km: float = settings.matching_radius_km):
        self.repo = repo
        self.default_radius_km = default_radius_km

    def _radius(self, radius_km):
        return self.default_radius_km if radius_km is None else radius_km

    async def nearby_users(self, role: Role, lat: float, lng: float, radius_km=None):
        users = await self.repo.list_users(role=role, status=UserStatus.ACTIVE)
        return find_nearby(users, lat, lng, self._radius(radius_km))

    async def nearby_ngos(self, lat: float, lng: float, radius_km=None):
        return await self.nearby_users(Role.NGO, lat, lng, radius_km)

    async def nearby_volunteers(self, lat: float, lng: float, radius_km=None):
        return await self.nearby_users(Role.VOLUNTEER, lat, lng, radius_km)

    async def nearby_donations(self, lat: float, lng: float, radius_km=None,
                               status: Optional[DonationStatus] = DonationStatus.CREATED):
        donations = await self.repo.list_donations(status=status)
        return find_nearby(donations, lat, lng, self._radius(radius_km))
