#!/usr/bin/env python3
"""
deploy.py - Stand up a fresh bond ledger and check that it responds

Creates a BondLedger, prints its deployment details, optionally funds the
deployer account, and runs a basic responsiveness check.

Run:
    python deploy.py                  # Deploy with defaults
    python deploy.py --fund=1000000   # Also deposit 1,000,000 to the deployer
    python deploy.py --quiet          # Do not print ledger internals
"""

from datetime import datetime
import sys

from metabond import BondLedger, BondLedgerConfig, LedgerError


DEPLOYER = "deployer"
QUIET_MODE = "--quiet" in sys.argv


def _flag_value(name: str, default: int) -> int:
    """Integer value of a --name=VALUE flag."""
    prefix = f"--{name}="
    for arg in sys.argv[1:]:
        if arg.startswith(prefix):
            return int(arg[len(prefix):])
    return default


def deploy(initial_funding: int = 0, verbose: bool = True) -> BondLedger:
    """Create a bond ledger and fund the deployer if asked to."""
    print("Starting MetaBond deployment...\n")

    config = BondLedgerConfig(initial_time=datetime.now().replace(microsecond=0), verbose=verbose)
    bonds = BondLedger(config)
    bonds.open_account(DEPLOYER)
    if initial_funding > 0:
        bonds.deposit(DEPLOYER, initial_funding)

    print(f"Deploying with account: {DEPLOYER}")
    print(f"Account balance: {bonds.balance_of(DEPLOYER)} {bonds.currency}\n")

    print("\n✅ Deployment successful!")
    print("═" * 51)
    print(f"MetaBond contract wallet: {bonds.contract_wallet}")
    print("═" * 51 + "\n")

    print("📍 Deployment Details:")
    print(f"   Ledger Name: {config.name}")
    print(f"   Currency:    {bonds.currency} ({config.currency_name})")
    print(f"   Deployer:    {DEPLOYER}")
    print(f"   Contract:    {bonds.contract_wallet}")
    print(f"   Time:        {bonds.current_time}")

    print("\n📚 Next Steps:")
    print("═" * 51)
    print("1. Deposit funds for investors: deposit()")
    print("2. Fund coupon payments:        fund_treasury()")
    print("3. Interact with the ledger using:")
    print("   - Issue bonds:    issue_bond()")
    print("   - Purchase bonds: purchase_bond()")
    print("   - Claim coupons:  claim_coupon()")
    print("═" * 51 + "\n")

    print("🧪 Testing basic ledger functionality...")
    print(f"   Initial total bonds: {bonds.get_total_bonds()}")
    report = bonds.verify_conservation()
    if not report['valid']:
        raise LedgerError(f"conservation check failed: {report['discrepancies']}")
    print("   ✅ Ledger is responsive and working!\n")

    print("🎉 MetaBond deployment complete!")
    return bonds


def main() -> int:
    try:
        deploy(_flag_value("fund", 0), verbose=not QUIET_MODE)
    except (LedgerError, ValueError) as e:
        print("\n❌ Deployment failed!", file=sys.stderr)
        print(e, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
