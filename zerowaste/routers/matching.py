# zerowaste/routers/matching.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from zerowaste.deps import bounded, get_actor, get_engine

router = APIRouter(prefix="/api/matching", tags=["matching"])


@router.get("/nearby/ngos")
async def nearby_ngos(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                      radius_km: Optional[float] = Query(None, gt=0),
                      actor=Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.matcher.nearby_ngos(lat, lng, radius_km))


@router.get("/nearby/volunteers")
async def nearby_volunteers(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                            radius_km: Optional[float] = Query(None, gt=0),
                            actor=Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.matcher.nearby_volunteers(lat, lng, radius_km))


@router.get("/nearby/donations")
async def nearby_donations(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180),
                           radius_km: Optional[float] = Query(None, gt=0),
                           actor=Depends(get_actor), engine=Depends(get_engine)):
    return await bounded(engine.matcher.nearby_donations(lat, lng, radius_km))
