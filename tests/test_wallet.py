"""Wallet ledger tests: paired transactions, negative balances and drift reports."""

from __future__ import annotations

from decimal import Decimal

import pytest

from ride2school.domain.enums import TransactionDirection, TransactionType
from ride2school.domain.errors import InsufficientFunds, UserNotFound, ValidationFailed
from ride2school.infrastructure.models import UserModel
from ride2school.services.wallet import WalletLedger


@pytest.fixture
def ledger_session(session_factory):
    """Run *fn(ledger)* inside one committed transaction."""

    async def _run(fn):
        async with session_factory() as session:
            async with session.begin():
                return await fn(WalletLedger(session))

    return _run


@pytest.mark.asyncio
async def test_credit_adds_net_of_fee(ledger_session, users, balance_of, transactions_of):
    await ledger_session(
        lambda ledger: ledger.credit(
            users.driver.id,
            Decimal("120.00"),
            TransactionType.RIDE_EARNINGS,
            fee_amount=Decimal("12.00"),
        )
    )
    assert await balance_of(users.driver) == Decimal("208.00")
    (tx,) = await transactions_of(users.driver)
    assert tx.type == TransactionDirection.CREDIT
    assert Decimal(tx.amount) == Decimal("120.00")
    assert Decimal(tx.net_amount) == Decimal("108.00")


@pytest.mark.asyncio
async def test_debit_may_go_negative(ledger_session, users, balance_of):
    await ledger_session(
        lambda ledger: ledger.debit(
            users.offline_driver.id, Decimal("12.00"), TransactionType.CANCELLATION_FEE
        )
    )
    assert await balance_of(users.offline_driver) == Decimal("-12.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-5.00"])
async def test_non_positive_amounts_rejected(ledger_session, users, amount):
    with pytest.raises(ValidationFailed):
        await ledger_session(
            lambda ledger: ledger.credit(
                users.parent.id, Decimal(amount), TransactionType.WALLET_TOPUP
            )
        )


@pytest.mark.asyncio
async def test_unknown_user(ledger_session):
    with pytest.raises(UserNotFound):
        await ledger_session(
            lambda ledger: ledger.debit(
                "no-such-user", Decimal("1.00"), TransactionType.RIDE_PAYMENT
            )
        )


@pytest.mark.asyncio
async def test_withdraw_cannot_exceed_balance(ledger_session, users, balance_of):
    with pytest.raises(InsufficientFunds):
        await ledger_session(
            lambda ledger: ledger.withdraw(users.driver.id, Decimal("100.01"))
        )
    assert await balance_of(users.driver) == Decimal("100.00")

    await ledger_session(lambda ledger: ledger.withdraw(users.driver.id, Decimal("100.00")))
    assert await balance_of(users.driver) == Decimal("0.00")


@pytest.mark.asyncio
async def test_balance_report_matches_ledger(ledger_session, users):
    async def _activity(ledger):
        await ledger.top_up(users.offline_driver.id, Decimal("50.00"))
        await ledger.credit(
            users.offline_driver.id,
            Decimal("100.00"),
            TransactionType.RIDE_EARNINGS,
            fee_amount=Decimal("10.00"),
        )
        await ledger.debit(
            users.offline_driver.id, Decimal("15.00"), TransactionType.CANCELLATION_FEE
        )
        return await ledger.get_balance(users.offline_driver.id)

    report = await ledger_session(_activity)
    assert report.balance == Decimal("125.00")
    assert report.verified_balance == Decimal("125.00")
    assert report.discrepancy == Decimal("0.00")
    assert report.is_accurate


@pytest.mark.asyncio
async def test_balance_report_flags_drift_without_repairing(
    ledger_session, session_factory, users, balance_of
):
    async with session_factory() as session:
        user = await session.get(UserModel, users.offline_driver.id)
        user.wallet_balance = Decimal("40.00")
        await session.commit()

    report = await ledger_session(
        lambda ledger: ledger.get_balance(users.offline_driver.id)
    )
    assert report.balance == Decimal("40.00")
    assert report.verified_balance == Decimal("0.00")
    assert report.discrepancy == Decimal("40.00")
    assert not report.is_accurate
    assert await balance_of(users.offline_driver) == Decimal("40.00")


@pytest.mark.asyncio
async def test_summary_and_history(ledger_session, users):
    async def _activity(ledger):
        await ledger.top_up(users.offline_driver.id, Decimal("50.00"))
        await ledger.credit(
            users.offline_driver.id,
            Decimal("100.00"),
            TransactionType.RIDE_EARNINGS,
            fee_amount=Decimal("10.00"),
        )
        await ledger.debit(
            users.offline_driver.id, Decimal("15.00"), TransactionType.CANCELLATION_FEE
        )
        credits = await ledger.history(
            users.offline_driver.id, direction=TransactionDirection.CREDIT
        )
        return credits, await ledger.summary(users.offline_driver.id)

    credits, summary = await ledger_session(_activity)
    assert len(credits) == 2
    assert summary["total_credits"] == Decimal("140.00")
    assert summary["total_debits"] == Decimal("15.00")
    assert summary["total_fees"] == Decimal("10.00")
    assert summary["net_amount"] == Decimal("125.00")
    assert summary["transaction_count"] == 3
    assert summary["breakdown"]["cancellation_fee"] == {
        "count": 1,
        "amount": Decimal("15.00"),
    }
