"""
Conservation Law Conformance Tests

INVARIANT: For every unit u, at all times t:
    Σ_{w ∈ wallets} balance(w, u, t) = 0      (system wallet included)

INVARIANT: For every bond b:
    total_supply(b) - available_supply(b) = Σ_{i ∈ investors(b)} amount(i, b)
    and the ledger's token balances mirror the investment records.

These tests use property-based testing over random sessions of
issuances, purchases, coupon claims and clock advances.
"""

from hypothesis import given, settings, HealthCheck
from decimal import Decimal

from metabond import SYSTEM_WALLET, bond_symbol

from tests.conformance.strategies import operations, run_session, INVESTORS


class TestConservationProperties:

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_every_unit_sums_to_zero(self, ops):
        """PROPERTY: value only enters through the system wallet."""
        bonds, _ = run_session(ops)
        report = bonds.ledger.verify_double_entry()
        assert report['valid'], report['discrepancies']

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_sold_supply_equals_holdings(self, ops):
        """PROPERTY: sold supply is exactly what investors hold."""
        bonds, _ = run_session(ops)
        for bond_id in range(1, bonds.get_total_bonds() + 1):
            details = bonds.get_bond_details(bond_id)
            held = sum(
                bonds.get_investment_details(i, bond_id).amount
                for i in bonds.get_bond_investors(bond_id)
            )
            assert 0 <= details.available_supply <= details.total_supply
            assert details.total_supply - details.available_supply == held
        assert bonds.verify_conservation()['valid']

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_currency_outside_system_is_total_deposited(self, ops):
        """PROPERTY: purchases and coupons move currency, they never create it."""
        bonds, _ = run_session(ops)
        ledger = bonds.ledger
        deposited = len(INVESTORS) * 1_000_000 + 10_000_000
        held = sum(
            ledger.get_balance(w, "ETH") for w in ledger.list_wallets() if w != SYSTEM_WALLET
        )
        assert held == Decimal(deposited)
        assert ledger.get_balance(SYSTEM_WALLET, "ETH") == Decimal(-deposited)

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_minted_supply_matches_terms(self, ops):
        """PROPERTY: each bond mints exactly its total supply, once."""
        bonds, _ = run_session(ops)
        for bond_id in range(1, bonds.get_total_bonds() + 1):
            symbol = bond_symbol(bond_id)
            minted = -bonds.ledger.get_balance(SYSTEM_WALLET, symbol)
            assert minted == Decimal(bonds.get_bond_details(bond_id).total_supply)

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_one_event_per_successful_operation(self, ops):
        """PROPERTY: notifications match successful operations one for one."""
        bonds, results = run_session(ops)
        succeeded = sum(
            1 for op, ok in zip(ops, results) if ok and op[0] != "advance"
        )
        assert len(bonds.events) == succeeded
        assert bonds.get_total_bonds() == sum(
            1 for op, ok in zip(ops, results) if ok and op[0] == "issue"
        )
