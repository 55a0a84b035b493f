"""
Ad scheduling and analytics.

An ad's status is derived from the current time and its optional
startDate/endDate bounds. `inactive` is a manual override that the
synchronization never touches.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pymongo import ReturnDocument

from database import create_document, utcnow
from queries import NEWEST_FIRST, as_utc, parse_object_id
from schemas import Ad, AdAnalytics

logger = logging.getLogger(__name__)

TRACK_FIELDS = {"impression": "impressions", "click": "clicks"}


def compute_status(now: datetime, start: Optional[datetime], end: Optional[datetime],
                   current: Optional[str] = None) -> str:
    if current == "inactive":
        return "inactive"
    now = as_utc(now)
    start, end = as_utc(start), as_utc(end)
    if end is not None and end < now:
        return "expired"
    if start is not None and start > now:
        return "scheduled"
    return "active"


def sync_statuses(db, now: Optional[datetime] = None) -> int:
    """Persist the derived status of every ad whose stored status differs. Returns the number changed."""
    now = now or utcnow()
    changed = 0
    for ad in db["ad"].find({"status": {"$ne": "inactive"}}):
        status = compute_status(now, ad.get("startDate"), ad.get("endDate"), ad.get("status"))
        if status != ad.get("status"):
            db["ad"].update_one({"_id": ad["_id"], "status": ad.get("status")}, {"$set": {"status": status, "updatedAt": now}})
            changed += 1
    if changed:
        logger.info("Synchronized %d ad status(es)", changed)
    return changed


def status_counts(db) -> Dict[str, int]:
    rows = db["ad"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    return {row["_id"]: row["count"] for row in rows}


def pick_active(db, now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> Optional[dict]:
    sync_statuses(db, now)
    ads = list(db["ad"].find({"status": "active"}))
    if not ads:
        return None
    return (rng or random).choice(ads)


def _require_ad_id(ad_id: Any):
    oid = parse_object_id(ad_id)
    if oid is None:
        raise HTTPException(status_code=400, detail="Invalid adId")
    return oid


def track(db, ad_id: str, kind: str, now: Optional[datetime] = None) -> dict:
    if kind not in TRACK_FIELDS:
        raise HTTPException(status_code=400, detail="Invalid request. Provide adId and type (impression/click)")
    oid = _require_ad_id(ad_id)
    field = TRACK_FIELDS[kind]
    now = now or utcnow()

    ad = db["ad"].find_one_and_update({"_id": oid}, {"$inc": {field: 1}}, return_document=ReturnDocument.AFTER)
    if not ad:
        raise HTTPException(status_code=404, detail="Ad not found")

    # bucket key is naive UTC midnight so it compares equal however the driver decodes dates
    bucket = AdAnalytics(adId=str(oid), date=as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None))
    untouched = {k: v for k, v in bucket.model_dump().items() if k in TRACK_FIELDS.values() and k != field}
    db["adanalytics"].update_one(
        {"adId": bucket.adId, "date": bucket.date},
        {"$inc": {field: 1}, "$setOnInsert": {**untouched, "createdAt": now}, "$set": {"updatedAt": now}},
        upsert=True,
    )
    logger.info("%s tracked for ad %s", kind, oid)
    return ad


def ctr(clicks: int, impressions: int) -> float:
    if not impressions:
        return 0
    return round(clicks / impressions * 100, 2)


def _summary(ad: dict) -> dict:
    impressions, clicks = ad.get("impressions", 0), ad.get("clicks", 0)
    return {
        "_id": ad["_id"],
        "title": ad.get("title"),
        "status": ad.get("status"),
        "impressions": impressions,
        "clicks": clicks,
        "ctr": ctr(clicks, impressions),
        "startDate": ad.get("startDate"),
        "endDate": ad.get("endDate"),
        "createdAt": ad.get("createdAt"),
    }


def analytics(db, ad_id: Optional[str] = None, days: int = 7, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if ad_id:
        oid = _require_ad_id(ad_id)
        ad = db["ad"].find_one({"_id": oid})
        if not ad:
            raise HTTPException(status_code=404, detail="Ad not found")
        window_start = (as_utc(now) - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        rows = [
            row for row in db["adanalytics"].find({"adId": str(oid)}).sort("date", 1)
            if as_utc(row["date"]) >= window_start
        ]
        return {
            "ad": _summary(ad),
            "dailyAnalytics": [
                {
                    "date": row["date"],
                    "impressions": row.get("impressions", 0),
                    "clicks": row.get("clicks", 0),
                    "ctr": ctr(row.get("clicks", 0), row.get("impressions", 0)),
                }
                for row in rows
            ],
        }

    ads = [_summary(ad) for ad in db["ad"].find({})]
    impressions = sum(a["impressions"] for a in ads)
    clicks = sum(a["clicks"] for a in ads)
    return {
        "totals": {
            "impressions": impressions,
            "clicks": clicks,
            "ctr": ctr(clicks, impressions),
            "totalAds": len(ads),
            "activeAds": len([a for a in ads if a["status"] == "active"]),
        },
        "ads": ads,
    }


# ----------------- Management -----------------
def list_ads(db, now: Optional[datetime] = None) -> List[dict]:
    sync_statuses(db, now)
    return list(db["ad"].find({}).sort(NEWEST_FIRST))


def create_ad(db, data: Dict[str, Any], now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    requested = data.get("status")
    status = compute_status(now, data.get("startDate"), data.get("endDate"), requested)
    ad = Ad(**{**data, "status": status})
    ad_id = create_document("ad", ad, database=db)
    logger.info("Ad %s created with status %s", ad_id, status)
    return db["ad"].find_one({"_id": parse_object_id(ad_id)})


def update_ad(db, ad_id: str, changes: Dict[str, Any], now: Optional[datetime] = None) -> dict:
    """`changes` holds only the fields the caller sent; a None date clears that bound."""
    now = now or utcnow()
    oid = _require_ad_id(ad_id)
    existing = db["ad"].find_one({"_id": oid})
    if not existing:
        raise HTTPException(status_code=404, detail="Ad not found")

    update = {k: v for k, v in changes.items() if k in ("title", "imageUrl", "link") and v}
    for bound in ("startDate", "endDate"):
        if bound in changes:
            update[bound] = changes[bound]

    start = update.get("startDate", existing.get("startDate"))
    end = update.get("endDate", existing.get("endDate"))
    requested = changes.get("status")
    if requested == "inactive":
        status = "inactive"
    else:
        # re-activating an inactive ad requires an explicit non-inactive status
        current = existing.get("status") if requested is None else requested
        status = compute_status(now, start, end, current)
    update["status"] = status
    update["updatedAt"] = now

    return db["ad"].find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)


def delete_ad(db, ad_id: str) -> None:
    oid = _require_ad_id(ad_id)
    result = db["ad"].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Ad not found")
    db["adanalytics"].delete_many({"adId": str(oid)})
    logger.info("Ad %s deleted", oid)
