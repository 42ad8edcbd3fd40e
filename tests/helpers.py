"""
helpers.py - Shared helpers for bond ledger tests

Functions that tests import directly (fixtures live in conftest.py).
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Tuple

from metabond import Ledger, Move, SYSTEM_WALLET, BondLedger, build_transaction


START = datetime(2025, 1, 1)
MATURITY = START + timedelta(days=365)


def fund(ledger: Ledger, wallet: str, amount, unit: str = "ETH") -> None:
    """Bring value into a wallet through the system wallet."""
    ledger.commit(build_transaction(ledger, [
        Move(Decimal(amount), unit, SYSTEM_WALLET, wallet,
             f"fund_{wallet}_{len(ledger.transaction_log)}")
    ]))


def unit_records(ledger: Ledger, unit: str) -> Dict[str, dict]:
    """Every keyed record of a unit."""
    return {key: ledger.get_unit_record(unit, key) for key in ledger.list_unit_records(unit)}


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare balances, unit states and records of two ledgers and return differences."""
    balance_diffs = []
    state_diffs = []
    record_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if bal1 != bal2:
                balance_diffs.append({
                    "wallet": wallet, "unit": unit,
                    "ledger1": bal1, "ledger2": bal2,
                })

    for unit_sym in all_units:
        if unit_sym not in ledger1.units or unit_sym not in ledger2.units:
            state_diffs.append({"unit": unit_sym, "missing": True})
            continue
        state1 = ledger1.get_unit_state(unit_sym)
        state2 = ledger2.get_unit_state(unit_sym)
        if state1 != state2:
            state_diffs.append({"unit": unit_sym, "ledger1": state1, "ledger2": state2})
        records1 = unit_records(ledger1, unit_sym)
        records2 = unit_records(ledger2, unit_sym)
        if records1 != records2:
            record_diffs.append({"unit": unit_sym, "ledger1": records1, "ledger2": records2})

    return {
        "equal": not (balance_diffs or state_diffs or record_diffs),
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
        "record_diffs": record_diffs,
    }


def snapshot(bonds: BondLedger) -> Tuple[List[str], dict, dict, dict, int, int]:
    """
    Wallets, balances, unit states, unit records, log length and event
    count of a bond ledger.
    """
    ledger = bonds.ledger
    balances = {}
    for wallet, bals in ledger.balances.items():
        held = {u: q for u, q in bals.items() if q != 0}
        if held:
            balances[wallet] = held
    states = {s: ledger.get_unit_state(s) for s in ledger.units}
    records = {s: unit_records(ledger, s) for s in ledger.units}
    return (sorted(ledger.registered_wallets), balances, states, records,
            len(ledger.transaction_log), len(bonds.events))
