from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import config
from ..database import get_db
from ..models.user import User
from ..schemas.donation import Donation, DonationCheckoutResponse, DonationCreate
from ..services.donation_service import DonationService
from ..utils.auth import get_optional_user
from ..utils.context import RequestContext, get_request_context

router = APIRouter(prefix="/api/donations", tags=["donations"])


@router.post("", response_model=DonationCheckoutResponse)
def create_donation(
    request: DonationCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = DonationService(db).create(
        ctx,
        donor_name=request.donor_name,
        donor_email=request.donor_email,
        amount=request.amount,
        currency=request.currency or config["DEFAULT_CURRENCY"],
        donor_phone=request.donor_phone,
        reference=request.reference,
        campaign_id=request.campaign_id,
        notes=request.notes,
        user=current_user,
    )
    return DonationCheckoutResponse(
        donation=Donation.model_validate(result.donation),
        transaction_id=result.checkout.transaction_id,
        redirect_url=result.checkout.redirect_url,
        expires_at=result.checkout.expires_at,
    )


@router.get("/{reference}", response_model=Donation)
def get_donation(reference: str, db: Session = Depends(get_db)):
    return DonationService(db).get_by_reference(reference)


@router.delete("/{reference}", response_model=Donation)
def cancel_donation(
    reference: str,
    current_user: Optional[User] = Depends(get_optional_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return DonationService(db).cancel(ctx, reference, current_user)
