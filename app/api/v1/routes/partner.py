from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import Principal, get_booking_engine, http_error, require_roles
from app.schemas.booking import DeclineIn, PartnerRequestOut, booking_out
from app.services.booking_engine import BookingEngine
from app.services.errors import BookingError, StaleTransition
from app.services.partner_service import PartnerResponseHandler

router = APIRouter(tags=["partner"])


def _handler(engine: BookingEngine, me: Principal) -> PartnerResponseHandler:
    # The partner's identity is their shop id.
    return PartnerResponseHandler(engine, shop_id=me.id)


@router.get("/partner/requests", response_model=list[PartnerRequestOut])
def active_requests(engine: BookingEngine = Depends(get_booking_engine), me: Principal = Depends(require_roles("partner"))):
    """Open escrow holds for this shop with the seconds left to respond."""
    return [
        PartnerRequestOut(booking=booking_out(p.booking), remainingSeconds=p.remaining_seconds)
        for p in _handler(engine, me).pending()
    ]


@router.post("/partner/requests/{booking_id}/accept")
def accept_request(booking_id: str, engine: BookingEngine = Depends(get_booking_engine), me: Principal = Depends(require_roles("partner"))):
    try:
        b = _handler(engine, me).accept(booking_id)
    except StaleTransition as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "status": e.status})
    except BookingError as e:
        raise http_error(e)
    return {"ok": True, "booking": booking_out(b)}


@router.post("/partner/requests/{booking_id}/decline")
def decline_request(booking_id: str, body: DeclineIn, engine: BookingEngine = Depends(get_booking_engine), me: Principal = Depends(require_roles("partner"))):
    try:
        b = _handler(engine, me).decline(booking_id, body.reason)
    except StaleTransition as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "status": e.status})
    except BookingError as e:
        raise http_error(e)
    return {"ok": True, "booking": booking_out(b)}
