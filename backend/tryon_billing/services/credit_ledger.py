"""
Credit ledger sync.

The consumable balance lives in two places:
- entitlements.consumable_balance (authoritative)
- credits.balance (mirror read by the client spend/fetch path)

Every public operation leaves both equal when it returns successfully.
Spends use a guarded single-statement decrement (WHERE balance >= amount)
so concurrent spenders for the same user cannot overdraw.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from tryon_billing.billing.errors import StorageInconsistencyError
from tryon_billing.models.base import utcnow
from tryon_billing.models.credit_balance import CreditBalance
from tryon_billing.models.entitlement import Entitlement, derived_quality
from tryon_billing.platform.errors import ValidationError
from tryon_billing.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"


@dataclass
class SpendResult:
    """Outcome of a spend; insufficient credits is a result, not an error."""
    success: bool
    balance: int
    spent: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"success": self.success, "balance": self.balance}
        if self.success:
            payload["spent"] = self.spent
        if self.error:
            payload["error"] = self.error
        return payload


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer", details={"amount": amount})
    return amount


class CreditLedgerService:
    """Add, spend and reconcile the mirrored consumable balance."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    # ------------------------------------------------------------------
    # In-transaction primitives (caller commits)
    # ------------------------------------------------------------------

    def apply_add(
        self,
        user_id: str,
        amount: int,
        *,
        packs_purchased: int = 0,
        grant_entry_access: bool = False,
    ) -> None:
        """
        Increment both locations inside the current transaction.

        Missing rows are inserted; a concurrent insert surfaces as
        IntegrityError for the caller's retry loop.
        """
        self.increment_entitlement(
            user_id,
            amount,
            packs_purchased=packs_purchased,
            grant_entry_access=grant_entry_access,
        )
        self.increment_mirror(user_id, amount)

    def increment_entitlement(
        self,
        user_id: str,
        amount: int,
        *,
        packs_purchased: int = 0,
        grant_entry_access: bool = False,
    ) -> None:
        values = {
            "consumable_balance": Entitlement.consumable_balance + amount,
            "updated_at": utcnow(),
        }
        if packs_purchased:
            values["total_packs_purchased"] = Entitlement.total_packs_purchased + packs_purchased
        if grant_entry_access:
            values["has_entry_access"] = True

        result = self.db_session.execute(
            update(Entitlement).where(Entitlement.user_id == user_id).values(**values)
        )
        if result.rowcount:
            return

        self.db_session.add(Entitlement(
            user_id=user_id,
            consumable_balance=amount,
            total_packs_purchased=packs_purchased,
            has_entry_access=grant_entry_access,
            **derived_quality(False),
        ))
        self.db_session.flush()

    def increment_mirror(self, user_id: str, amount: int) -> None:
        result = self.db_session.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(balance=CreditBalance.balance + amount, updated_at=utcnow())
        )
        if result.rowcount:
            return
        self.db_session.add(CreditBalance(user_id=user_id, balance=amount))
        self.db_session.flush()

    def copy_entitlement_to_mirror(self, user_id: str) -> None:
        """
        Set the mirror to the entitlement balance in one statement.

        The UPDATE reads the entitlement row itself, so a spend committed
        after the caller looked at the balances is never overwritten.
        """
        entitlement_balance = (
            select(Entitlement.consumable_balance)
            .where(Entitlement.user_id == user_id)
            .scalar_subquery()
        )
        result = self.db_session.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(balance=entitlement_balance, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return
        self.db_session.add(CreditBalance(user_id=user_id, balance=self._entitlement_balance(user_id) or 0))
        self.db_session.flush()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def add_credits(self, user_id: str, amount: int) -> int:
        """
        Add credits to both locations atomically.

        Returns:
            New balance

        Raises:
            ValidationError: amount is not a positive integer
            SQLAlchemyError: storage kept failing after retries (nothing applied)
        """
        amount = _validate_amount(amount)

        def _work() -> None:
            self.apply_add(user_id, amount)

        run_in_transaction(self.db_session, _work, operation="add_credits")
        logger.info("Credits added", extra={"user_id": user_id, "amount": amount})
        self.verify_consistency(user_id)
        return self._entitlement_balance(user_id) or 0

    def spend_credit(self, user_id: str, amount: int = 1) -> SpendResult:
        """
        Spend credits, failing (not clamping) when the balance is too low.

        Two concurrent spends for the same user serialize on the guarded
        UPDATE of the entitlement row; only those that still find
        balance >= amount succeed.
        """
        amount = _validate_amount(amount)

        def _work() -> Optional[int]:
            decremented = self.db_session.execute(
                update(Entitlement)
                .where(
                    Entitlement.user_id == user_id,
                    Entitlement.consumable_balance >= amount,
                )
                .values(
                    consumable_balance=Entitlement.consumable_balance - amount,
                    updated_at=utcnow(),
                )
            )
            if not decremented.rowcount:
                return None

            new_balance = self.db_session.execute(
                select(Entitlement.consumable_balance).where(Entitlement.user_id == user_id)
            ).scalar_one()

            mirrored = self.db_session.execute(
                update(CreditBalance)
                .where(
                    CreditBalance.user_id == user_id,
                    CreditBalance.balance >= amount,
                )
                .values(balance=CreditBalance.balance - amount, updated_at=utcnow())
            )
            if not mirrored.rowcount:
                mirror_balance = self._mirror_balance(user_id)
                self._report_inconsistency(user_id, new_balance + amount, mirror_balance, "spend_credit")
                self.copy_entitlement_to_mirror(user_id)
            return new_balance

        new_balance = run_in_transaction(self.db_session, _work, operation="spend_credit")

        if new_balance is None:
            balance = self.get_balance(user_id)
            logger.info("Spend rejected: insufficient credits", extra={
                "user_id": user_id,
                "amount": amount,
                "balance": balance,
            })
            return SpendResult(success=False, balance=balance, error=INSUFFICIENT_CREDITS)

        self.verify_consistency(user_id)
        return SpendResult(success=True, balance=new_balance, spent=amount)

    def get_balance(self, user_id: str) -> int:
        """Balance as the client sees it: mirror first, entitlement as fallback."""
        mirror_balance = self._mirror_balance(user_id)
        if mirror_balance is not None:
            return mirror_balance
        return self._entitlement_balance(user_id) or 0

    def verify_consistency(self, user_id: str, heal: bool = True) -> bool:
        """
        Check that both locations agree; optionally heal from the entitlement row.

        Both balances are read in one statement; healing copies the
        entitlement balance as of the UPDATE, not as of the read.

        Returns:
            True if they already agreed
        """
        entitlement_balance, mirror_balance = self._read_balances(user_id)

        if entitlement_balance is None:
            if mirror_balance:
                self._report_inconsistency(user_id, None, mirror_balance, "verify_consistency")
                return False
            return True
        # A missing mirror row reads as zero on the client path.
        if mirror_balance == entitlement_balance or (mirror_balance is None and entitlement_balance == 0):
            return True

        self._report_inconsistency(user_id, entitlement_balance, mirror_balance, "verify_consistency")
        if heal:
            run_in_transaction(
                self.db_session,
                lambda: self.copy_entitlement_to_mirror(user_id),
                operation="heal_mirror",
            )
            logger.warning("Credits mirror overwritten from entitlement row", extra={
                "user_id": user_id,
                "observed_balance": entitlement_balance,
            })
        return False

    # ------------------------------------------------------------------

    def _read_balances(self, user_id: str) -> Tuple[Optional[int], Optional[int]]:
        """(entitlement balance, mirror balance) from a single SELECT."""
        row = self.db_session.execute(
            select(
                select(Entitlement.consumable_balance)
                .where(Entitlement.user_id == user_id)
                .scalar_subquery(),
                select(CreditBalance.balance)
                .where(CreditBalance.user_id == user_id)
                .scalar_subquery(),
            )
        ).one()
        return row[0], row[1]

    def _entitlement_balance(self, user_id: str) -> Optional[int]:
        return self.db_session.execute(
            select(Entitlement.consumable_balance).where(Entitlement.user_id == user_id)
        ).scalar_one_or_none()

    def _mirror_balance(self, user_id: str) -> Optional[int]:
        return self.db_session.execute(
            select(CreditBalance.balance).where(CreditBalance.user_id == user_id)
        ).scalar_one_or_none()

    @staticmethod
    def _report_inconsistency(
        user_id: str,
        entitlement_balance: Optional[int],
        mirror_balance: Optional[int],
        operation: str,
    ) -> None:
        error = StorageInconsistencyError(user_id, entitlement_balance, mirror_balance)
        logger.critical(error.message, extra={
            "error_code": error.error_code,
            "user_id": user_id,
            "entitlement_balance": entitlement_balance,
            "mirror_balance": mirror_balance,
            "operation": operation,
        })
