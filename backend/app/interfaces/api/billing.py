from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.application.services.billing_service import get_member_billing_payload
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import CurrentMember, get_current_member

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/subscription", status_code=status.HTTP_200_OK)
def get_subscription(
    member: CurrentMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return get_member_billing_payload(db, user_id=member.user_id)
