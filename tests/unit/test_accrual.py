"""
test_accrual.py - Mining accrual engine.

Tests:
 - daily rate derivation from raw token amounts
 - inclusive day counting, caps and idempotent catch-up
 - concurrent crediting of one wallet
 - rate self-heal from the purchase log
 - expected balance from the independent ledgers
"""

import asyncio

import pytest

from fake_chain import ALICE, BOB, ONE_TOKEN, tx_hash, unix_at

from rewards_server.accrual import compute_daily_rate, pending_days

pytestmark = pytest.mark.asyncio


async def _seed_user(storage, wallet=ALICE, user_id="ALICE1"):
    await storage.users.upsert(wallet, user_id)


async def _seed_purchase(storage, start_date, daily_coins=30, n=1, wallet=ALICE, total_days=30):
    return await storage.purchases.insert(wallet, tx_hash(n), daily_coins, start_date, total_days)


# ── compute_daily_rate ──────────────────────────────────────────────────────

class TestComputeDailyRate:

    async def test_eighteen_decimals(self):
        assert compute_daily_rate(30 * ONE_TOKEN, 18) == 30

    async def test_six_decimals(self):
        assert compute_daily_rate(30_000_000, 6) == 30

    async def test_floors_fraction(self):
        assert compute_daily_rate(31_999_999, 6) == 31

    async def test_below_one_coin_is_zero(self):
        assert compute_daily_rate(ONE_TOKEN // 2, 18) == 0

    async def test_non_positive_is_zero(self):
        assert compute_daily_rate(0, 18) == 0
        assert compute_daily_rate(-5 * ONE_TOKEN, 18) == 0

    async def test_exact_for_huge_amounts(self):
        raw = 123456789012345678901234567890
        assert compute_daily_rate(raw, 18) == 123456789012

    async def test_rate_too_large_to_store(self):
        assert compute_daily_rate(2 ** 255, 18) == 0
        assert compute_daily_rate((2 ** 63 - 1) * ONE_TOKEN, 18) == 2 ** 63 - 1


class TestPendingDays:

    async def test_pending_excludes_credited(self):
        row = {"start_date": "2025-03-06", "total_days": 30, "credited_days": 4}
        assert pending_days(row, "2025-03-15") == 6

    async def test_pending_capped(self):
        row = {"start_date": "2025-01-01", "total_days": 30, "credited_days": 0}
        assert pending_days(row, "2025-03-15") == 30


# ── credit_pending_days ─────────────────────────────────────────────────────

class TestCreditPendingDays:

    async def test_purchase_scenario_ten_days(self, storage, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.days_ago(9))

        result = await accrual.credit_pending_days(ALICE)
        assert result == {"credited_coins": 300, "purchases_credited": 1}
        assert await storage.users.get_balance(ALICE) == 300
        fresh = await storage.purchases.get(row["id"])
        assert fresh["credited_days"] == 10
        assert fresh["last_credit_date"] == clock.today()

        again = await accrual.credit_pending_days(ALICE)
        assert again["credited_coins"] == 0
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 10
        assert await storage.users.get_balance(ALICE) == 300

    async def test_start_today_is_one_day(self, storage, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=7)

        result = await accrual.credit_pending_days(ALICE)
        assert result["credited_coins"] == 7
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 1

    async def test_future_start_credits_nothing(self, storage, accrual, clock):
        await _seed_user(storage)
        await _seed_purchase(storage, "2025-04-01")
        assert (await accrual.credit_pending_days(ALICE))["credited_coins"] == 0
        assert await storage.users.get_balance(ALICE) == 0

    async def test_next_day_credits_one_more(self, storage, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today())
        await accrual.credit_pending_days(ALICE)

        clock.advance(days=1)
        result = await accrual.credit_pending_days(ALICE)
        assert result["credited_coins"] == 30
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 2
        assert await storage.users.get_balance(ALICE) == 60

    async def test_capped_at_total_days(self, storage, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.days_ago(45), daily_coins=2)

        result = await accrual.credit_pending_days(ALICE)
        assert result["credited_coins"] == 60
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 30

        clock.advance(days=10)
        assert (await accrual.credit_pending_days(ALICE))["credited_coins"] == 0
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 30

    async def test_aggregates_across_purchases(self, storage, accrual, clock):
        await _seed_user(storage)
        await _seed_purchase(storage, clock.days_ago(1), daily_coins=10, n=1)
        await _seed_purchase(storage, clock.days_ago(2), daily_coins=5, n=2)

        result = await accrual.credit_pending_days(ALICE)
        assert result == {"credited_coins": 35, "purchases_credited": 2}
        assert await storage.users.get_balance(ALICE) == 35

    async def test_other_wallets_untouched(self, storage, accrual, clock):
        await _seed_user(storage)
        await _seed_user(storage, BOB, "BOB1")
        await _seed_purchase(storage, clock.days_ago(2), wallet=BOB)

        await accrual.credit_pending_days(ALICE)
        assert await storage.users.get_balance(BOB) == 0

    async def test_concurrent_calls_credit_once(self, storage, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.days_ago(9))

        results = await asyncio.gather(
            accrual.credit_pending_days(ALICE),
            accrual.credit_pending_days(ALICE),
            accrual.credit_pending_days(ALICE),
        )
        assert sum(r["credited_coins"] for r in results) == 300
        assert await storage.users.get_balance(ALICE) == 300
        assert (await storage.purchases.get(row["id"]))["credited_days"] == 10

    async def test_no_purchases(self, storage, accrual):
        await _seed_user(storage)
        assert await accrual.credit_pending_days(ALICE) == {"credited_coins": 0, "purchases_credited": 0}


# ── normalize_rate_if_needed ────────────────────────────────────────────────

class TestRateSelfHeal:

    async def test_implausible_rate_is_rederived(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=5_000_000)
        chain.add_purchase(ALICE, 30 * ONE_TOKEN, unix_at(clock.today()), tx_hash(1))

        assert await accrual.normalize_rate_if_needed(row) == 30
        assert (await storage.purchases.get(row["id"]))["daily_coins"] == 30

    async def test_self_heal_is_deterministic(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=0)
        chain.add_purchase(ALICE, 30 * ONE_TOKEN, unix_at(clock.today()), tx_hash(1))

        first = await accrual.normalize_rate_if_needed(row)
        fresh = await storage.purchases.get(row["id"])
        second = await accrual.normalize_rate_if_needed(fresh)
        assert first == second == 30
        assert chain.fetch_calls == 1

    async def test_plausible_rate_not_fetched(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=30)
        assert await accrual.normalize_rate_if_needed(row) == 30
        assert chain.fetch_calls == 0

    async def test_chain_failure_keeps_stored_value(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=5_000_000)
        chain.add_purchase(ALICE, 30 * ONE_TOKEN, unix_at(clock.today()), tx_hash(1))
        chain.fail_reads = True

        assert await accrual.normalize_rate_if_needed(row) == 5_000_000
        assert (await storage.purchases.get(row["id"]))["daily_coins"] == 5_000_000

    async def test_zero_rederived_rate_not_persisted(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=0)
        chain.add_purchase(ALICE, ONE_TOKEN // 10, unix_at(clock.today()), tx_hash(1))

        assert await accrual.normalize_rate_if_needed(row) == 0
        assert (await storage.purchases.get(row["id"]))["daily_coins"] == 0

    async def test_row_without_tx_hash_is_left_alone(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        row = await storage.purchases.insert(ALICE, None, 0, clock.today())
        assert await accrual.normalize_rate_if_needed(row) == 0
        assert chain.fetch_calls == 0

    async def test_threshold_is_configurable(self, storage, chain, accrual, clock):
        accrual.weird_rate_threshold = 10
        await _seed_user(storage)
        row = await _seed_purchase(storage, clock.today(), daily_coins=50)
        chain.add_purchase(ALICE, 5 * ONE_TOKEN, unix_at(clock.today()), tx_hash(1))
        assert await accrual.normalize_rate_if_needed(row) == 5

    async def test_credit_uses_healed_rate(self, storage, chain, accrual, clock):
        await _seed_user(storage)
        await _seed_purchase(storage, clock.days_ago(1), daily_coins=5_000_000)
        chain.add_purchase(ALICE, 30 * ONE_TOKEN, unix_at(clock.days_ago(1)), tx_hash(1))

        result = await accrual.credit_pending_days(ALICE)
        assert result["credited_coins"] == 60


# ── compute_expected_balance ────────────────────────────────────────────────

class TestExpectedBalance:

    async def test_sums_ledgers(self, storage, accrual, clock):
        await _seed_user(storage)
        await storage.logins.record(ALICE, "2025-03-14")
        await storage.logins.record(ALICE, "2025-03-15")
        await storage.referrals.record(BOB, "ALICE1")
        await _seed_purchase(storage, clock.days_ago(2), daily_coins=10)
        await accrual.credit_pending_days(ALICE)
        await storage.coin_audit.record(ALICE, 7, "bonus", "0xadmin")
        await storage.mining_adjustments.record(ALICE, 4, "fix", "0xadmin")

        ledgers = await accrual.compute_expected_balance(ALICE, "ALICE1")
        assert ledgers == {
            "logins": 2,
            "referrals": 5,
            "mined": 30,
            "admin_adjustments": 7,
            "mining_adjustments": 4,
            "expected": 48,
        }

    async def test_negative_ledger_floored(self, storage, accrual):
        await _seed_user(storage)
        await storage.logins.record(ALICE, "2025-03-15")
        await storage.coin_audit.record(ALICE, -50, "penalty", "0xadmin")

        ledgers = await accrual.compute_expected_balance(ALICE, "ALICE1")
        assert ledgers["admin_adjustments"] == 0
        assert ledgers["expected"] == 1
