"""
test_bond_scenarios.py - End-to-end bond scenarios

Tests:
- The one-year 5% bond: purchase, claim after 30 days, claim after 60 more
- Several bonds and investors side by side
- Maturity closes purchases and claims
- Replaying the transaction log reproduces balances and bond state
- Concurrent purchases never oversell
"""

import pytest
import threading
from datetime import timedelta
from decimal import Decimal

from metabond import (
    BondLedger, BondLedgerConfig,
    ValidationError, LedgerError, TransferRuleViolation,
    Move, build_transaction,
    BondIssued, BondPurchased, CouponClaimed,
    COUPON_PERIOD,
)
from tests.helpers import START, MATURITY, compare_ledger_states


class TestFivePercentBond:
    """
    face_value=100, coupon_rate=500, total_supply=1000, one year to maturity.

    Ten units cost 1000; the annual coupon on them is 500.
    """

    def test_worked_example(self, issued_bond):
        bonds, bond_id = issued_bond

        bonds.purchase_bond("alice", bond_id, 10, 1000)
        assert bonds.get_bond_details(bond_id).available_supply == 990
        assert bonds.get_investment_details("alice", bond_id).amount == 10

        first_claim = START + timedelta(days=30)
        bonds.advance_time(first_claim)
        assert bonds.claim_coupon("alice", bond_id) == 41

        second_claim = first_claim + timedelta(days=60)
        bonds.advance_time(second_claim)
        assert bonds.claim_coupon("alice", bond_id) == 83

        details = bonds.get_investment_details("alice", bond_id)
        assert details.last_coupon_claim == second_claim
        assert details.purchase_date == START
        assert bonds.balance_of("alice") == 100_000 - 1000 + 41 + 83

        assert [type(e) for e in bonds.events.for_bond(bond_id)] == [
            BondIssued, BondPurchased, CouponClaimed, CouponClaimed,
        ]
        assert [e.coupon_amount for e in bonds.events.of_type(CouponClaimed)] == [41, 83]

    def test_partial_month_is_forfeited(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)

        bonds.advance_time(START + timedelta(days=59))
        assert bonds.claim_coupon("alice", bond_id) == 41

        # 29 days were carried past the first period, and are gone
        bonds.advance_time(START + timedelta(days=60))
        with pytest.raises(ValidationError, match="claim period not reached"):
            bonds.claim_coupon("alice", bond_id)

        bonds.advance_time(START + timedelta(days=89))
        assert bonds.claim_coupon("alice", bond_id) == 41

    def test_topping_up_does_not_restart_the_clock(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)
        bonds.advance_time(START + timedelta(days=20))
        bonds.purchase_bond("alice", bond_id, 10, 1000)

        bonds.advance_time(START + COUPON_PERIOD)
        # The whole holding earns from the first purchase date
        assert bonds.claim_coupon("alice", bond_id) == 83


class TestMultipleBonds:

    def test_bonds_are_isolated(self, funded_bonds):
        green = funded_bonds.issue_bond("acme", "Green 2026", 100, MATURITY, 500, 100)
        short = funded_bonds.issue_bond("globex", "Short 2025", 10, START + timedelta(days=45), 1000, 50)

        funded_bonds.purchase_bond("alice", green, 100, 10_000)
        funded_bonds.purchase_bond("bob", short, 50, 500)

        assert funded_bonds.get_bond_details(green).available_supply == 0
        assert funded_bonds.get_bond_details(short).available_supply == 0
        assert funded_bonds.balance_of("acme") == 10_000
        assert funded_bonds.balance_of("globex") == 500

        with pytest.raises(ValidationError, match="exceeds available supply 0"):
            funded_bonds.purchase_bond("bob", green, 1, 100)

        funded_bonds.advance_time(START + COUPON_PERIOD)
        assert funded_bonds.claim_coupon("alice", green) == 100 * 100 * 500 // 10_000 // 12
        assert funded_bonds.claim_coupon("bob", short) == 50 * 10 * 1000 // 10_000 // 12

        with pytest.raises(ValidationError, match="no investment"):
            funded_bonds.claim_coupon("alice", short)

        assert funded_bonds.verify_conservation()['valid']


class TestMaturity:

    def test_no_purchase_or_claim_after_maturity(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)
        bonds.advance_time(MATURITY + timedelta(days=1))

        with pytest.raises(ValidationError, match="matured"):
            bonds.purchase_bond("bob", bond_id, 1, 100)
        with pytest.raises(ValidationError, match="matured"):
            bonds.claim_coupon("alice", bond_id)

        # Holdings stay on record after maturity
        assert bonds.get_investment_details("alice", bond_id).amount == 10
        assert bonds.get_bond_details(bond_id).is_active

    def test_last_claim_just_before_maturity(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)
        bonds.advance_time(MATURITY - timedelta(seconds=1))
        # 364 days, 23:59:59 elapsed: 12 whole periods
        assert bonds.claim_coupon("alice", bond_id) == 500


class TestSecondaryMarket:

    def test_bond_tokens_cannot_be_traded_between_investors(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)
        bonds.open_account("bob")
        ledger = bonds.ledger
        with pytest.raises(TransferRuleViolation):
            ledger.commit(build_transaction(ledger, [
                Move(Decimal("5"), "BOND-1", "alice", "bob", "otc_trade")
            ]))
        assert bonds.verify_conservation()['valid']


class TestReplay:

    def test_replay_reproduces_bond_ledger(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1250)
        bonds.purchase_bond("bob", bond_id, 25, 2500)
        bonds.advance_time(START + COUPON_PERIOD)
        bonds.claim_coupon("alice", bond_id)
        bonds.advance_time(START + 3 * COUPON_PERIOD)
        bonds.claim_coupon("bob", bond_id)
        bonds.claim_coupon("alice", bond_id)

        replayed = bonds.ledger.replay()
        diff = compare_ledger_states(bonds.ledger, replayed)
        assert diff["equal"], diff
        assert replayed.verify_double_entry()['valid']

    def test_replayed_log_rejects_a_reapplied_purchase(self, issued_bond):
        bonds, bond_id = issued_bond
        bonds.purchase_bond("alice", bond_id, 10, 1000)
        purchase = bonds.transactions[-1]
        replayed = bonds.ledger.replay()
        pending = build_transaction(
            replayed, list(purchase.moves), list(purchase.state_changes),
            record_changes=list(purchase.record_changes),
        )
        with pytest.raises(LedgerError):
            replayed.commit(pending)


class TestConcurrency:

    def test_concurrent_purchases_never_oversell(self):
        bonds = BondLedger(BondLedgerConfig(initial_time=START, verbose=False))
        bond_id = bonds.issue_bond("acme", "Hot Issue", 10, MATURITY, 500, 100)
        investors = [f"investor_{i}" for i in range(20)]
        for investor in investors:
            bonds.deposit(investor, 1000)

        failures = []
        lock = threading.Lock()

        def buy(investor):
            for _ in range(3):
                try:
                    bonds.purchase_bond(investor, bond_id, 2, 20)
                except ValidationError as e:
                    with lock:
                        failures.append(e)

        threads = [threading.Thread(target=buy, args=(i,)) for i in investors]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        details = bonds.get_bond_details(bond_id)
        held = sum(bonds.get_investment_details(i, bond_id).amount for i in investors)
        assert details.available_supply == 0
        assert held == 100
        assert len(failures) == 60 - 50
        assert all(e.field == "amount" for e in failures)
        assert len(bonds.events.of_type(BondPurchased)) == 50
        assert bonds.balance_of("acme") == 1000
        assert bonds.verify_conservation()['valid']

    def test_concurrent_issuance_allocates_unique_ids(self):
        bonds = BondLedger(BondLedgerConfig(initial_time=START, verbose=False))
        ids = []
        lock = threading.Lock()

        def issue(n):
            bond_id = bonds.issue_bond(f"issuer_{n}", f"Bond {n}", 100, MATURITY, 500, 10)
            with lock:
                ids.append(bond_id)

        threads = [threading.Thread(target=issue, args=(n,)) for n in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(ids) == list(range(1, 17))
        assert bonds.get_total_bonds() == 16
