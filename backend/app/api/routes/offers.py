from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_resolver
from app.models.replacement_offer import ReplacementOfferStatus
from app.schemas.replacement import ExpireOffersOut, OfferDecline, OfferRespond, ReplacementOfferOut
from app.services.replacement_resolver import ReplacementResolver

router = APIRouter()


@router.post("/offers/expire", response_model=ExpireOffersOut)
def expire_offers(resolver: ReplacementResolver = Depends(get_resolver)) -> ExpireOffersOut:
    return ExpireOffersOut(expired_count=resolver.expire_stale_offers())


@router.get("/offers", response_model=list[ReplacementOfferOut])
def list_offers(
    teacher_id: str = Query(...),
    offer_status: ReplacementOfferStatus | None = Query(default=None, alias="status"),
    resolver: ReplacementResolver = Depends(get_resolver),
) -> list[ReplacementOfferOut]:
    return resolver.offers_for_teacher(teacher_id, offer_status)


@router.post("/offers/{offer_id}/accept", response_model=ReplacementOfferOut)
def accept_offer(
    offer_id: str,
    payload: OfferRespond | None = None,
    resolver: ReplacementResolver = Depends(get_resolver),
) -> ReplacementOfferOut:
    teacher_id = payload.teacher_id if payload is not None else None
    return resolver.accept_offer(offer_id, teacher_id=teacher_id)


@router.post("/offers/{offer_id}/decline", response_model=ReplacementOfferOut)
def decline_offer(
    offer_id: str,
    payload: OfferDecline | None = None,
    resolver: ReplacementResolver = Depends(get_resolver),
) -> ReplacementOfferOut:
    reason = payload.reason if payload is not None else None
    teacher_id = payload.teacher_id if payload is not None else None
    return resolver.decline_offer(offer_id, reason=reason, teacher_id=teacher_id)
