"""
Public ad endpoints served by the tutorials and jobs apps.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

import ads
from database import get_db
from queries import serialize

router = APIRouter()


class TrackRequest(BaseModel):
    adId: str
    type: str


@router.get("/api/ad/active")
def active_ad(db=Depends(get_db)):
    ad = ads.pick_active(db)
    if ad is None:
        return {"success": False, "message": "No active ads available"}
    ad = serialize(ad)
    return {"success": True, "ad": {k: ad.get(k) for k in ("_id", "title", "imageUrl", "link", "status")}}


@router.post("/api/ad/track")
def track_ad(req: TrackRequest, db=Depends(get_db)):
    ad = ads.track(db, req.adId, req.type)
    field = ads.TRACK_FIELDS[req.type]
    return {"success": True, "message": f"{req.type} tracked successfully", field: ad[field]}
