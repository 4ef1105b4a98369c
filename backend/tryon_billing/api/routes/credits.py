"""
Credit (looks) API routes.

Credits only enter through billing events and reconciliation; the client
can read and spend them.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tryon_billing.api.dependencies.auth import get_current_user_id
from tryon_billing.database.session import get_db_session
from tryon_billing.platform.errors import PaymentRequiredError
from tryon_billing.services.credit_ledger import CreditLedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["credits"])


class SpendCreditsRequest(BaseModel):
    amount: int = Field(default=1, ge=1, description="Looks to spend")


class BalanceResponse(BaseModel):
    success: bool = True
    balance: int


class SpendResponse(BalanceResponse):
    spent: int


@router.get("", response_model=BalanceResponse)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
):
    return {"success": True, "balance": CreditLedgerService(db_session).get_balance(user_id)}


@router.post("/spend", response_model=SpendResponse)
async def spend_credits(
    body: SpendCreditsRequest,
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
):
    """
    Spend looks.

    Insufficient balance is answered with 402 and the current balance.
    """
    result = CreditLedgerService(db_session).spend_credit(user_id, body.amount)
    if not result.success:
        raise PaymentRequiredError(details={"balance": result.balance, "requested": body.amount})
    return result.to_dict()
