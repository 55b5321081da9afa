"""
Wallet ledger.

Balances live on ``users.wallet_balance``; every change to it is paired with
an append-only ``transactions`` row in the same session, so a ride transition
that moves money commits or rolls back together with its ledger entries.

Balances may go negative: cancellation penalties are always applied, even
without sufficient funds.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.domain.entities import BalanceReport
from ride2school.domain.enums import (
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)
from ride2school.domain.errors import InsufficientFunds, UserNotFound, ValidationFailed
from ride2school.domain.pricing import to_money
from ride2school.infrastructure.models import TransactionModel, UserModel
from ride2school.infrastructure.repositories import (
    TransactionRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def signed_amount(transaction: TransactionModel) -> Decimal:
    """Credits count their net amount, debits their gross amount."""
    if transaction.type == TransactionDirection.CREDIT:
        return Decimal(transaction.net_amount)
    return -Decimal(transaction.amount)


class WalletLedger:
    def __init__(self, session: AsyncSession, tolerance: Decimal = Decimal("0.01")):
        self.session = session
        self.users = UserRepository(session)
        self.transactions = TransactionRepository(session)
        self.tolerance = tolerance

    async def _account(self, user_id: str) -> UserModel:
        user = await self.users.get_for_update(user_id)
        if user is None:
            raise UserNotFound(f"Wallet owner {user_id} not found.")
        return user

    async def credit(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: TransactionType,
        *,
        description: Optional[str] = None,
        fee_amount: Decimal = ZERO,
        ride_id: Optional[str] = None,
    ) -> str:
        """Append a completed credit and raise the balance by the net amount."""
        amount = to_money(amount)
        fee_amount = to_money(fee_amount)
        if amount <= ZERO:
            raise ValidationFailed("Credit amount must be positive.")
        user = await self._account(user_id)
        net = amount - fee_amount
        tx = await self.transactions.add(
            TransactionModel(
                user_id=user_id,
                ride_id=ride_id,
                amount=amount,
                type=TransactionDirection.CREDIT,
                transaction_type=transaction_type,
                description=description,
                fee_amount=fee_amount,
                net_amount=net,
                status=TransactionStatus.COMPLETED,
            )
        )
        user.wallet_balance = to_money(Decimal(user.wallet_balance or 0) + net)
        await self.session.flush()
        logger.info(
            "Credited %s to %s (%s, fee %s)", net, user_id, transaction_type.value, fee_amount
        )
        return tx.id

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: TransactionType,
        *,
        description: Optional[str] = None,
        ride_id: Optional[str] = None,
    ) -> str:
        """Append a completed debit and lower the balance, possibly below zero."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationFailed("Debit amount must be positive.")
        user = await self._account(user_id)
        tx = await self.transactions.add(
            TransactionModel(
                user_id=user_id,
                ride_id=ride_id,
                amount=amount,
                type=TransactionDirection.DEBIT,
                transaction_type=transaction_type,
                description=description,
                fee_amount=ZERO,
                net_amount=amount,
                status=TransactionStatus.COMPLETED,
            )
        )
        user.wallet_balance = to_money(Decimal(user.wallet_balance or 0) - amount)
        await self.session.flush()
        if user.wallet_balance < ZERO:
            logger.info("Wallet of %s is now negative (%s)", user_id, user.wallet_balance)
        return tx.id

    async def top_up(self, user_id: str, amount: Decimal) -> str:
        return await self.credit(
            user_id, amount, TransactionType.WALLET_TOPUP, description="Wallet top-up"
        )

    async def withdraw(self, user_id: str, amount: Decimal) -> str:
        user = await self._account(user_id)
        if to_money(amount) > Decimal(user.wallet_balance or 0):
            raise InsufficientFunds("Cannot withdraw more than the wallet balance.")
        return await self.debit(
            user_id,
            amount,
            TransactionType.WALLET_WITHDRAWAL,
            description="Wallet withdrawal",
        )

    async def get_balance(self, user_id: str) -> BalanceReport:
        """Compare the stored balance against the completed-transaction log.

        Drift is reported for display only, never repaired.
        """
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        completed = [
            tx
            for tx in await self.transactions.list_for_user(user_id, limit=None)
            if tx.status == TransactionStatus.COMPLETED
        ]
        verified = to_money(sum((signed_amount(tx) for tx in completed), ZERO))
        balance = to_money(user.wallet_balance or 0)
        discrepancy = abs(balance - verified)
        if discrepancy >= self.tolerance:
            logger.warning(
                "Wallet drift for %s: stored %s, ledger %s", user_id, balance, verified
            )
        return BalanceReport(
            balance=balance,
            verified_balance=verified,
            discrepancy=discrepancy,
            is_accurate=discrepancy < self.tolerance,
        )

    async def history(
        self,
        user_id: str,
        *,
        direction: Optional[TransactionDirection] = None,
        transaction_type: Optional[TransactionType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TransactionModel]:
        return await self.transactions.list_for_user(
            user_id,
            direction=direction,
            transaction_type=transaction_type,
            limit=limit,
            offset=offset,
        )

    async def summary(
        self, user_id: str, since: Optional[datetime] = None
    ) -> dict[str, Any]:
        """Totals per direction and per transaction type."""
        rows = await self.transactions.list_for_user(user_id, since=since, limit=None)
        total_credits = total_debits = total_fees = ZERO
        breakdown: dict[str, dict[str, Any]] = {}
        for tx in rows:
            if tx.type == TransactionDirection.CREDIT:
                value = Decimal(tx.net_amount)
                total_credits += value
            else:
                value = Decimal(tx.amount)
                total_debits += value
            total_fees += Decimal(tx.fee_amount or 0)
            entry = breakdown.setdefault(
                tx.transaction_type.value, {"count": 0, "amount": ZERO}
            )
            entry["count"] += 1
            entry["amount"] = to_money(entry["amount"] + value)
        return {
            "total_credits": to_money(total_credits),
            "total_debits": to_money(total_debits),
            "total_fees": to_money(total_fees),
            "net_amount": to_money(total_credits - total_debits),
            "transaction_count": len(rows),
            "breakdown": breakdown,
        }
