#!/usr/bin/env python3
"""
demo.py - Walkthrough: A Bond from Issuance to Maturity

Follows one bond through its life on the ledger. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-3:   Setup       - The bond ledger, funded accounts, issuing a bond
  4-6:   Purchases   - Exact payment, refunds, rejected purchases
  7-9:   Coupons     - Monthly accrual, the 30-day gate, multi-month claims
  10-11: Maturity    - What closes at maturity, the audit trail

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from metabond import (
    BondLedger, BondLedgerConfig,
    LedgerError, ValidationError, InsufficientPaymentError,
    BondPurchased, CouponClaimed,
    bond_symbol, compute_annual_coupon, COUPON_PERIOD,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding
    alice_deposit: int = 100_000
    bob_deposit: int = 20_000
    treasury_funding: int = 50_000

    # Bond terms
    face_value: int = 100
    coupon_rate: int = 500          # basis points
    total_supply: int = 1000
    term_days: int = 365

    # Purchases
    alice_units: int = 10
    bob_units: int = 20
    bob_overpayment: int = 150


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with its objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_balances(bonds: BondLedger, *accounts: str):
    for account in accounts:
        print(f"  {account:<10} {bonds.balance_of(account):>10} {bonds.currency}")
    print(f"  {'treasury':<10} {bonds.treasury_balance():>10} {bonds.currency}")


# ============================================================================
# SETUP (Steps 1-3)
# ============================================================================

def step_01_bond_ledger() -> BondLedger:
    step_header(1, "The Bond Ledger",
        "Create a bond ledger: one settlement ledger, one currency, one contract wallet.")

    print(">>> bonds = BondLedger(BondLedgerConfig(initial_time=...))")
    bonds = BondLedger(BondLedgerConfig(name="demo", initial_time=CONFIG.start_time))

    section_header("Initial State")
    print(f"Current time:     {bonds.current_time}")
    print(f"Currency:         {bonds.currency}")
    print(f"Contract wallet:  {bonds.contract_wallet}")
    print(f"Bonds issued:     {bonds.get_total_bonds()}")
    return bonds


def step_02_fund_accounts(bonds: BondLedger) -> BondLedger:
    step_header(2, "Funding Accounts",
        "Value enters through the system wallet; coupons need a funded treasury.")

    bonds.deposit("alice", CONFIG.alice_deposit)
    bonds.deposit("bob", CONFIG.bob_deposit)
    bonds.deposit("sponsor", CONFIG.treasury_funding)
    bonds.fund_treasury("sponsor", CONFIG.treasury_funding)

    section_header("Balances")
    show_balances(bonds, "alice", "bob", "sponsor")
    return bonds


def step_03_issue_bond(bonds: BondLedger):
    step_header(3, "Issuing a Bond",
        "The issuer fixes the terms; the whole supply is minted into the contract wallet.")

    maturity = CONFIG.start_time + timedelta(days=CONFIG.term_days)
    bond_id = bonds.issue_bond(
        "acme", "ACME 5% 2026",
        face_value=CONFIG.face_value, maturity_date=maturity,
        coupon_rate=CONFIG.coupon_rate, total_supply=CONFIG.total_supply,
    )

    section_header("Bond Details")
    details = bonds.get_bond_details(bond_id)
    for name in ("issuer", "name", "face_value", "maturity_date", "coupon_rate",
                 "total_supply", "available_supply", "is_active"):
        print(f"  {name:<17} {getattr(details, name)}")

    section_header("Rejected Issuance")
    try:
        bonds.issue_bond("acme", "Too generous", 100, maturity, 10_001, 10)
    except ValidationError as e:
        print(f"  ✗ {e}")
    print(f"  Bonds issued: {bonds.get_total_bonds()} (unchanged)")
    return bonds, bond_id, maturity


# ============================================================================
# PURCHASES (Steps 4-6)
# ============================================================================

def step_04_purchase(bonds: BondLedger, bond_id: int):
    step_header(4, "Primary Purchase",
        "Tokens, payment and proceeds settle in one transaction.")

    cost = CONFIG.face_value * CONFIG.alice_units
    bonds.purchase_bond("alice", bond_id, CONFIG.alice_units, cost)

    section_header("After Purchase")
    print(f"  available_supply: {bonds.get_bond_details(bond_id).available_supply}")
    print(f"  alice holds:      {bonds.get_investment_details('alice', bond_id)}")
    show_balances(bonds, "alice", "acme")


def step_05_refund(bonds: BondLedger, bond_id: int):
    step_header(5, "Overpayment Is Refunded",
        "Excess payment returns to the buyer in the same transaction.")

    cost = CONFIG.face_value * CONFIG.bob_units
    payment = cost + CONFIG.bob_overpayment
    before = bonds.balance_of("bob")
    bonds.purchase_bond("bob", bond_id, CONFIG.bob_units, payment)

    print(f"  bob attached {payment}, cost was {cost}")
    print(f"  bob paid {before - bonds.balance_of('bob')} net")


def step_06_rejections(bonds: BondLedger, bond_id: int):
    step_header(6, "Rejected Purchases",
        "A failed purchase changes nothing and emits nothing.")

    events_before = len(bonds.events)
    available = bonds.get_bond_details(bond_id).available_supply

    try:
        bonds.purchase_bond("bob", bond_id, available + 1, 10**9)
    except ValidationError as e:
        print(f"  ✗ oversell: {e}")
    try:
        bonds.purchase_bond("bob", bond_id, 5, 499)
    except InsufficientPaymentError as e:
        print(f"  ✗ underpaid: {e}")

    print(f"  available_supply still {bonds.get_bond_details(bond_id).available_supply}")
    print(f"  events emitted: {len(bonds.events) - events_before}")


# ============================================================================
# COUPONS (Steps 7-9)
# ============================================================================

def step_07_first_coupon(bonds: BondLedger, bond_id: int):
    step_header(7, "The First Coupon",
        "After 30 days, one month of the annual coupon is payable.")

    annual = compute_annual_coupon(CONFIG.alice_units, CONFIG.face_value, CONFIG.coupon_rate)
    print(f"  annual coupon on alice's holding: {annual}")

    bonds.advance_time(CONFIG.start_time + COUPON_PERIOD)
    coupon = bonds.claim_coupon("alice", bond_id)
    print(f"  {annual} * 1 // 12 = {coupon}")


def step_08_claim_gate(bonds: BondLedger, bond_id: int):
    step_header(8, "The 30-Day Gate",
        "A claim before 30 days have passed since the last claim is rejected.")

    bonds.advance_time(bonds.current_time + timedelta(days=10))
    try:
        bonds.claim_coupon("alice", bond_id)
    except ValidationError as e:
        print(f"  ✗ {e}")


def step_09_two_months(bonds: BondLedger, bond_id: int):
    step_header(9, "Claiming Two Months at Once",
        "Whole periods accrue; the claim clock resets to the claim time.")

    last_claim = bonds.get_investment_details("alice", bond_id).last_coupon_claim
    bonds.advance_time(last_claim + 2 * COUPON_PERIOD)
    coupon = bonds.claim_coupon("alice", bond_id)
    print(f"  coupon: {coupon}")
    print(f"  last_coupon_claim: {bonds.get_investment_details('alice', bond_id).last_coupon_claim}")


# ============================================================================
# MATURITY (Steps 10-11)
# ============================================================================

def step_10_maturity(bonds: BondLedger, bond_id: int, maturity: datetime):
    step_header(10, "Maturity",
        "At maturity, purchases and coupon claims close.")

    bonds.advance_time(maturity)
    for action, call in (
        ("purchase", lambda: bonds.purchase_bond("bob", bond_id, 1, CONFIG.face_value)),
        ("claim", lambda: bonds.claim_coupon("bob", bond_id)),
    ):
        try:
            call()
        except ValidationError as e:
            print(f"  ✗ {action}: {e}")


def step_11_audit(bonds: BondLedger, bond_id: int):
    step_header(11, "The Audit Trail",
        "Every operation is one logged transaction and one notification.")

    section_header("Notifications")
    for event in bonds.events.for_bond(bond_id):
        print(f"  {event}")

    section_header("Totals")
    purchases = bonds.events.of_type(BondPurchased)
    coupons = bonds.events.of_type(CouponClaimed)
    print(f"  units sold:     {sum(e.amount for e in purchases)}")
    print(f"  coupons paid:   {sum(e.coupon_amount for e in coupons)}")
    print(f"  investors:      {bonds.get_bond_investors(bond_id)}")
    print(f"  token holders:  {bonds.ledger.get_positions(bond_symbol(bond_id))}")

    section_header("Replay and Conservation")
    bonds.ledger.verbose = False
    replayed = bonds.ledger.replay()
    same = all(
        replayed.get_unit_state(u) == bonds.ledger.get_unit_state(u)
        and replayed.list_unit_records(u) == bonds.ledger.list_unit_records(u)
        for u in bonds.ledger.list_units()
    )
    print(f"  replay matches:     {same}")
    print(f"  conservation holds: {bonds.verify_conservation()['valid']}")


def main():
    print("=" * 70)
    print("       METABOND - BOND LIFECYCLE WALKTHROUGH")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    try:
        bonds = step_01_bond_ledger()
        wait_for_enter()
        bonds = step_02_fund_accounts(bonds)
        wait_for_enter()
        bonds, bond_id, maturity = step_03_issue_bond(bonds)
        wait_for_enter()

        step_04_purchase(bonds, bond_id)
        wait_for_enter()
        step_05_refund(bonds, bond_id)
        wait_for_enter()
        step_06_rejections(bonds, bond_id)
        wait_for_enter()

        step_07_first_coupon(bonds, bond_id)
        wait_for_enter()
        step_08_claim_gate(bonds, bond_id)
        wait_for_enter()
        step_09_two_months(bonds, bond_id)
        wait_for_enter()

        step_10_maturity(bonds, bond_id, maturity)
        wait_for_enter()
        step_11_audit(bonds, bond_id)
    except LedgerError as e:
        print(f"\n❌ Walkthrough stopped: {e}")
        return 1

    print("\n" + "=" * 70)
    print("       WALKTHROUGH COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See metabond/units/bond.py for the bond rules
      - Run deploy.py to stand up an empty bond ledger
      - Run tests: pytest tests/
    """)
    return 0


if __name__ == "__main__":
    sys.exit(main())
