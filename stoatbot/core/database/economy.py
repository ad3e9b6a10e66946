"""
StoatBot - Economy Operations
=============================

Wallets, banks, daily rewards and work payouts.

DESIGN:
    Single-account edits (update_account) take the write-behind path like
    config setters. Multi-step mutations (transfer, claim_daily, work,
    deposit, withdraw) run inside one explicit transaction:

    1. take the economy lock so no other economy mutation interleaves
    2. open a store transaction and load each account (cache first)
    3. validate; a ValidationError rolls back and nothing is written
    4. write the new rows, drop any pending batch op for those keys
    5. after COMMIT, put the new values in the cache as clean

    Steps 2-5 also hold the batch writer lock, so a batch that already
    snapshotted an older value cannot commit after the transaction.

    Every account is normalized before it is written, so
    total == balance + bank holds for every persisted row.
"""

import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from stoatbot.core import constants
from stoatbot.core.database.base import Transaction
from stoatbot.core.database.batch import BatchOperation
from stoatbot.core.database.cache import CacheEntry
from stoatbot.core.database.models import EconomyAccount
from stoatbot.core.errors import ValidationError
from stoatbot.core.logger import logger

if TYPE_CHECKING:
    from stoatbot.core.database.manager import PersistenceManager


UPSERT_ACCOUNT = """
    INSERT INTO economy
        (user_id, balance, bank, last_daily, last_work, work_streak, inventory, total)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(user_id) DO UPDATE SET
        balance = excluded.balance,
        bank = excluded.bank,
        last_daily = excluded.last_daily,
        last_work = excluded.last_work,
        work_streak = excluded.work_streak,
        inventory = excluded.inventory,
        total = excluded.total
"""

SELECT_ACCOUNT = "SELECT * FROM economy WHERE user_id = ?"


def economy_key(user_id: int) -> str:
    return f"economy:{user_id}"


def format_duration(seconds: float) -> str:
    """Human readable cooldown, e.g. '3h 12m' or '45s'."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, constants.SECONDS_PER_HOUR)
    minutes, secs = divmod(rest, constants.SECONDS_PER_MINUTE)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class WorkResult:
    account: EconomyAccount
    reward: int
    streak_bonus: int
    streak: int


class EconomyMixin:
    """Mixin for economy operations."""

    # =========================================================================
    # Read
    # =========================================================================

    async def get_account(self: "PersistenceManager", user_id: int) -> EconomyAccount:
        """
        Get a user's account. Users without a row get a zeroed account that
        is only written once something changes. Treat the result as read-only.
        """
        key = economy_key(user_id)
        entry = self._cache.get(key)
        if entry is not None:
            return entry.value

        row = await self.fetchone(SELECT_ACCOUNT, (user_id,))

        entry = self._cache.get(key)
        if entry is not None:
            return entry.value

        account = EconomyAccount.from_row(row) if row else EconomyAccount(user_id=user_id)
        self._cache.put(key, account)
        return account

    async def get_leaderboard(self: "PersistenceManager", limit: int = 10) -> List[EconomyAccount]:
        """Richest users by total. Pending writes are flushed first."""
        await self.flush()
        rows = await self.fetchall(
            "SELECT * FROM economy ORDER BY total DESC, user_id ASC LIMIT ?",
            (max(1, limit),),
        )
        return [EconomyAccount.from_row(row) for row in rows]

    # =========================================================================
    # Batched Write
    # =========================================================================

    def _account_op(self: "PersistenceManager", entry: CacheEntry) -> BatchOperation:
        account: EconomyAccount = entry.value
        key = economy_key(account.user_id)
        version = entry.version
        return BatchOperation(
            key=key,
            query=UPSERT_ACCOUNT,
            params=account.copy().normalize().to_row(),
            on_commit=lambda: self._cache.mark_clean(key, version),
            on_drop=lambda: self._cache.mark_dropped(key, version),
        )

    async def update_account(
        self: "PersistenceManager",
        user_id: int,
        mutator: Callable[[EconomyAccount], None],
    ) -> EconomyAccount:
        """Apply ``mutator`` to a copy of the account and write it back (batched)."""
        async with self._economy_lock:
            account = (await self.get_account(user_id)).copy()
            mutator(account)
            account.user_id = user_id
            account.normalize()

            entry = self._cache.put(economy_key(user_id), account, dirty=True)
            await self._writer.enqueue(self._account_op(entry))
            return account

    # =========================================================================
    # Transactional Writes
    # =========================================================================

    async def _load_for_update(self: "PersistenceManager", tx: Transaction, user_id: int) -> EconomyAccount:
        entry = self._cache.peek(economy_key(user_id))
        if entry is not None:
            return entry.value.copy()
        row = await tx.fetchone(SELECT_ACCOUNT, (user_id,))
        return EconomyAccount.from_row(row) if row else EconomyAccount(user_id=user_id)

    async def _write_accounts(
        self: "PersistenceManager",
        tx: Transaction,
        accounts: List[EconomyAccount],
    ) -> None:
        for account in accounts:
            account.normalize()
            await tx.execute(UPSERT_ACCOUNT, account.to_row())
            self._writer.discard(economy_key(account.user_id))

    def _cache_committed(self: "PersistenceManager", accounts: List[EconomyAccount]) -> None:
        for account in accounts:
            self._cache.put(economy_key(account.user_id), account)

    async def transfer(
        self: "PersistenceManager",
        from_id: int,
        to_id: int,
        amount: int,
    ) -> Dict[int, EconomyAccount]:
        """
        Move ``amount`` from one wallet to another atomically.

        Returns:
            Both accounts after the transfer, keyed by user ID.

        Raises:
            ValidationError: Bad amount, self-transfer or insufficient funds.
        """
        if amount <= 0:
            raise ValidationError("Amount must be a positive number.")
        if from_id == to_id:
            raise ValidationError("You cannot send coins to yourself.")

        async with self._economy_lock, self._writer.exclusive():
            async with self.transaction() as tx:
                sender = await self._load_for_update(tx, from_id)
                receiver = await self._load_for_update(tx, to_id)

                if sender.balance < amount:
                    raise ValidationError(
                        f"Insufficient funds: you have 💰 {sender.balance:,} in your wallet."
                    )

                sender.balance -= amount
                receiver.balance += amount
                await self._write_accounts(tx, [sender, receiver])

            self._cache_committed([sender, receiver])

        logger.info("Coins Transferred", [
            ("From", str(from_id)),
            ("To", str(to_id)),
            ("Amount", f"{amount:,}"),
        ])
        return {from_id: sender, to_id: receiver}

    async def claim_daily(self: "PersistenceManager", user_id: int, now: Optional[float] = None) -> EconomyAccount:
        """
        Pay the daily reward once per 24 hours, based on the stored last_daily.

        Raises:
            ValidationError: Still on cooldown (retry_after set to seconds left).
        """
        now = time.time() if now is None else now

        async with self._economy_lock, self._writer.exclusive():
            async with self.transaction() as tx:
                account = await self._load_for_update(tx, user_id)

                if account.last_daily is not None:
                    remaining = constants.DAILY_COOLDOWN - (now - account.last_daily)
                    if remaining > 0:
                        raise ValidationError(
                            f"You already claimed your daily reward. Come back in {format_duration(remaining)}.",
                            retry_after=remaining,
                        )

                account.balance += constants.DAILY_AMOUNT
                account.last_daily = now
                await self._write_accounts(tx, [account])

            self._cache_committed([account])
        return account

    async def work(
        self: "PersistenceManager",
        user_id: int,
        now: Optional[float] = None,
        reward: Optional[int] = None,
    ) -> WorkResult:
        """
        Pay a work reward once per hour.

        The streak grows with each shift and resets when the previous shift
        was more than 48 hours ago. Bonus is floor(reward * streak * 0.1).

        Raises:
            ValidationError: Still on cooldown (retry_after set to seconds left).
        """
        now = time.time() if now is None else now
        if reward is None:
            reward = random.randint(constants.WORK_MIN_REWARD, constants.WORK_MAX_REWARD)

        async with self._economy_lock, self._writer.exclusive():
            async with self.transaction() as tx:
                account = await self._load_for_update(tx, user_id)

                if account.last_work is not None:
                    elapsed = now - account.last_work
                    remaining = constants.WORK_COOLDOWN - elapsed
                    if remaining > 0:
                        raise ValidationError(
                            f"You are tired. Rest for {format_duration(remaining)} before working again.",
                            retry_after=remaining,
                        )
                    if elapsed > constants.WORK_STREAK_EXPIRY:
                        account.work_streak = 0

                account.work_streak += 1
                bonus = int(reward * account.work_streak * constants.WORK_STREAK_BONUS)
                account.balance += reward + bonus
                account.last_work = now
                await self._write_accounts(tx, [account])

            self._cache_committed([account])
        return WorkResult(account=account, reward=reward, streak_bonus=bonus, streak=account.work_streak)

    async def deposit(self: "PersistenceManager", user_id: int, amount: int) -> EconomyAccount:
        """Move coins from wallet to bank."""
        if amount <= 0:
            raise ValidationError("Amount must be a positive number.")

        async with self._economy_lock, self._writer.exclusive():
            async with self.transaction() as tx:
                account = await self._load_for_update(tx, user_id)
                if account.balance < amount:
                    raise ValidationError(
                        f"Insufficient funds: you have 💰 {account.balance:,} in your wallet."
                    )
                account.balance -= amount
                account.bank += amount
                await self._write_accounts(tx, [account])

            self._cache_committed([account])
        return account

    async def withdraw(self: "PersistenceManager", user_id: int, amount: int) -> EconomyAccount:
        """Move coins from bank to wallet."""
        if amount <= 0:
            raise ValidationError("Amount must be a positive number.")

        async with self._economy_lock, self._writer.exclusive():
            async with self.transaction() as tx:
                account = await self._load_for_update(tx, user_id)
                if account.bank < amount:
                    raise ValidationError(
                        f"Insufficient funds: you have 💰 {account.bank:,} in the bank."
                    )
                account.bank -= amount
                account.balance += amount
                await self._write_accounts(tx, [account])

            self._cache_committed([account])
        return account
