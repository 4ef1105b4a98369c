"""
Tests for the mirrored credit ledger.

Tests cover:
1. add/spend keep both locations equal at rest
2. insufficient credits is a result, not an exception
3. concurrent spends never overdraw
4. divergence is detected and healed from the entitlement row
"""

import logging
import threading

import pytest
from sqlalchemy import select, update

from tryon_billing.database.session import create_session_factory
from tryon_billing.models import CreditBalance, Entitlement
from tryon_billing.platform.errors import ValidationError
from tryon_billing.services.credit_ledger import INSUFFICIENT_CREDITS, CreditLedgerService
from tryon_billing.tests.factories import seed_entitlement


def balances(session, user_id):
    session.expire_all()
    entitlement = session.execute(
        select(Entitlement.consumable_balance).where(Entitlement.user_id == user_id)
    ).scalar_one_or_none()
    mirror = session.execute(
        select(CreditBalance.balance).where(CreditBalance.user_id == user_id)
    ).scalar_one_or_none()
    return entitlement, mirror


def commit_spend(factory, user_id, amount=1):
    """Decrement both rows from another connection, the way a committed spend leaves them."""
    with factory() as session:
        session.execute(
            update(Entitlement)
            .where(Entitlement.user_id == user_id)
            .values(consumable_balance=Entitlement.consumable_balance - amount)
        )
        session.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(balance=CreditBalance.balance - amount)
        )
        session.commit()


def spend_after_read(ledger, factory, user_id):
    """Make the ledger's balance check commit a concurrent spend right after it reads."""
    read_balances = ledger._read_balances

    def read_then_spend(uid):
        observed = read_balances(uid)
        commit_spend(factory, user_id)
        return observed

    ledger._read_balances = read_then_spend


class TestAddCredits:

    def test_add_creates_both_rows(self, db_session, user_id):
        ledger = CreditLedgerService(db_session)

        new_balance = ledger.add_credits(user_id, 10)

        assert new_balance == 10
        assert balances(db_session, user_id) == (10, 10)

    def test_add_is_cumulative(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=5)
        ledger = CreditLedgerService(db_session)

        ledger.add_credits(user_id, 30)

        assert balances(db_session, user_id) == (35, 35)

    def test_add_does_not_touch_subscription_flag(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=0, active=True)

        CreditLedgerService(db_session).add_credits(user_id, 6)

        entitlement = db_session.get(Entitlement, user_id)
        db_session.refresh(entitlement)
        assert entitlement.subscription_active is True
        assert entitlement.consumable_balance == 6

    @pytest.mark.parametrize("amount", [0, -3, 1.5, True, "5"])
    def test_add_rejects_non_positive_or_non_int(self, db_session, user_id, amount):
        with pytest.raises(ValidationError):
            CreditLedgerService(db_session).add_credits(user_id, amount)

        assert balances(db_session, user_id) == (None, None)


class TestSpendCredit:

    def test_spend_decrements_both(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=3)

        result = CreditLedgerService(db_session).spend_credit(user_id)

        assert result.success is True
        assert result.balance == 2
        assert result.spent == 1
        assert balances(db_session, user_id) == (2, 2)

    def test_insufficient_credits_is_a_result(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=1)

        result = CreditLedgerService(db_session).spend_credit(user_id, amount=2)

        assert result.success is False
        assert result.error == INSUFFICIENT_CREDITS
        assert result.balance == 1
        assert balances(db_session, user_id) == (1, 1)

    def test_spend_without_entitlement_fails(self, db_session, user_id):
        result = CreditLedgerService(db_session).spend_credit(user_id)

        assert result.success is False
        assert result.balance == 0

    def test_spend_heals_lagging_mirror(self, db_session, user_id, caplog):
        seed_entitlement(db_session, user_id, balance=5, mirror=False)
        db_session.add(CreditBalance(user_id=user_id, balance=0))
        db_session.commit()

        with caplog.at_level(logging.CRITICAL):
            result = CreditLedgerService(db_session).spend_credit(user_id)

        assert result.success is True
        assert balances(db_session, user_id) == (4, 4)
        assert any(record.levelno == logging.CRITICAL for record in caplog.records)

    def test_sequence_keeps_locations_equal(self, db_session, user_id):
        ledger = CreditLedgerService(db_session)
        ledger.add_credits(user_id, 10)
        for _ in range(4):
            ledger.spend_credit(user_id)
        ledger.add_credits(user_id, 30)
        ledger.spend_credit(user_id, amount=5)
        ledger.spend_credit(user_id, amount=100)

        assert balances(db_session, user_id) == (31, 31)
        assert ledger.get_balance(user_id) == 31


class TestConcurrentSpends:

    def test_n_spends_against_k_balance(self, file_engine, user_id):
        n_spends, k_balance = 10, 3
        factory = create_session_factory(file_engine)
        with factory() as session:
            seed_entitlement(session, user_id, balance=k_balance)

        results = []
        errors = []
        lock = threading.Lock()
        start = threading.Barrier(n_spends)

        def spend():
            session = factory()
            try:
                start.wait()
                result = CreditLedgerService(session).spend_credit(user_id)
                with lock:
                    results.append(result)
            except Exception as e:  # surfaced by the assertion below
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=spend) for _ in range(n_spends)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        succeeded = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert len(succeeded) == k_balance
        assert len(rejected) == n_spends - k_balance
        assert all(r.error == INSUFFICIENT_CREDITS for r in rejected)

        with factory() as session:
            assert balances(session, user_id) == (0, 0)


class TestVerifyConsistency:

    def test_consistent_returns_true(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=7)

        assert CreditLedgerService(db_session).verify_consistency(user_id) is True

    def test_missing_mirror_with_zero_balance_is_consistent(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=0, mirror=False)

        assert CreditLedgerService(db_session).verify_consistency(user_id) is True

    def test_divergence_is_healed_from_entitlement(self, db_session, user_id, caplog):
        seed_entitlement(db_session, user_id, balance=12, mirror=False)
        db_session.add(CreditBalance(user_id=user_id, balance=40))
        db_session.commit()

        with caplog.at_level(logging.CRITICAL):
            consistent = CreditLedgerService(db_session).verify_consistency(user_id)

        assert consistent is False
        assert balances(db_session, user_id) == (12, 12)
        assert "STORAGE_INCONSISTENCY" in [getattr(r, "error_code", None) for r in caplog.records]

    def test_detect_only_does_not_heal(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=2, mirror=False)
        db_session.add(CreditBalance(user_id=user_id, balance=9))
        db_session.commit()

        assert CreditLedgerService(db_session).verify_consistency(user_id, heal=False) is False
        assert balances(db_session, user_id) == (2, 9)

    def test_get_balance_prefers_mirror(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=3, mirror=False)
        ledger = CreditLedgerService(db_session)

        assert ledger.get_balance(user_id) == 3

        db_session.add(CreditBalance(user_id=user_id, balance=8))
        db_session.commit()
        assert ledger.get_balance(user_id) == 8


class TestConsistencyCheckUnderConcurrentSpend:

    def test_spend_between_read_and_heal_is_kept(self, file_engine, user_id):
        factory = create_session_factory(file_engine)
        with factory() as session:
            seed_entitlement(session, user_id, balance=5, mirror=False)
            session.add(CreditBalance(user_id=user_id, balance=9))
            session.commit()

        session = factory()
        try:
            ledger = CreditLedgerService(session)
            spend_after_read(ledger, factory, user_id)

            assert ledger.verify_consistency(user_id) is False
        finally:
            session.close()

        with factory() as session:
            assert balances(session, user_id) == (4, 4)

    def test_agreeing_rows_stay_equal_when_spend_lands_mid_check(self, file_engine, user_id):
        factory = create_session_factory(file_engine)
        with factory() as session:
            CreditLedgerService(session).add_credits(user_id, 5)

        session = factory()
        try:
            ledger = CreditLedgerService(session)
            spend_after_read(ledger, factory, user_id)

            assert ledger.verify_consistency(user_id) is True
        finally:
            session.close()

        with factory() as session:
            assert balances(session, user_id) == (4, 4)
