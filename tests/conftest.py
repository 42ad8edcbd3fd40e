"""
conftest.py - Shared pytest fixtures for bond ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, with currency, funded)
- Bond ledgers (fresh, funded investors, one issued bond)
"""

import pytest

from metabond import Ledger, BondLedger, BondLedgerConfig, native_currency

from tests.helpers import START, MATURITY, fund


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False)


@pytest.fixture
def basic_ledger():
    """Ledger with ETH and two wallets."""
    ledger = Ledger("test", START, verbose=False)
    ledger.register_unit(native_currency())
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 ETH."""
    fund(basic_ledger, "alice", 10_000)
    return basic_ledger


# =============================================================================
# BOND LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def bonds():
    """Fresh, quiet bond ledger starting on 2025-01-01."""
    return BondLedger(BondLedgerConfig(name="test", initial_time=START, verbose=False))


@pytest.fixture
def funded_bonds(bonds):
    """Bond ledger with two funded investors and a funded treasury."""
    bonds.deposit("alice", 100_000)
    bonds.deposit("bob", 50_000)
    bonds.deposit("sponsor", 1_000_000)
    bonds.fund_treasury("sponsor", 500_000)
    return bonds


@pytest.fixture
def issued_bond(funded_bonds):
    """
    One issued bond: face 100, 5% coupon, 1000 units, maturing in a year.

    Returns:
        (bond ledger, bond id)
    """
    bond_id = funded_bonds.issue_bond(
        "acme", "ACME 5% 2026",
        face_value=100, maturity_date=MATURITY,
        coupon_rate=500, total_supply=1000,
    )
    return funded_bonds, bond_id
