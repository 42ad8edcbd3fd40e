"""
Hypothesis strategies and a driver for random bond ledger sessions.

A session is a list of operations applied in order to a fresh BondLedger.
Operations are allowed to fail; the driver records which ones succeeded.
"""

from datetime import timedelta
from typing import List, Tuple

from hypothesis import strategies as st

from metabond import BondLedger, BondLedgerConfig, LedgerError

from tests.helpers import START, snapshot


INVESTORS = ["alice", "bob", "carol"]
ISSUERS = ["acme", "globex"]


issue_op = st.tuples(
    st.just("issue"),
    st.sampled_from(ISSUERS),
    st.integers(min_value=-5, max_value=500),        # face_value
    st.integers(min_value=-30, max_value=400),       # days to maturity
    st.integers(min_value=0, max_value=10_001),      # coupon_rate
    st.integers(min_value=0, max_value=200),         # total_supply
)

buy_op = st.tuples(
    st.just("buy"),
    st.sampled_from(INVESTORS),
    st.integers(min_value=1, max_value=4),           # bond id
    st.integers(min_value=-1, max_value=120),        # amount
    st.integers(min_value=-100, max_value=500),      # payment above (or below) cost
)

claim_op = st.tuples(
    st.just("claim"),
    st.sampled_from(INVESTORS),
    st.integers(min_value=1, max_value=4),           # bond id
)

advance_op = st.tuples(
    st.just("advance"),
    st.integers(min_value=0, max_value=75),          # days
)

operations = st.lists(
    st.one_of(issue_op, buy_op, claim_op, advance_op),
    min_size=1, max_size=40,
)


def new_session() -> BondLedger:
    """Bond ledger with funded investors and a funded treasury."""
    bonds = BondLedger(BondLedgerConfig(name="session", initial_time=START, verbose=False))
    for investor in INVESTORS:
        bonds.deposit(investor, 1_000_000)
    bonds.deposit("sponsor", 10_000_000)
    bonds.fund_treasury("sponsor", 10_000_000)
    return bonds


def apply(bonds: BondLedger, op: Tuple) -> bool:
    """Apply one operation. True if it succeeded, False if it was rejected."""
    kind = op[0]
    try:
        if kind == "issue":
            _, issuer, face_value, days, coupon_rate, total_supply = op
            bonds.issue_bond(issuer, f"{issuer} bond", face_value,
                             bonds.current_time + timedelta(days=days),
                             coupon_rate, total_supply)
        elif kind == "buy":
            _, investor, bond_id, amount, extra = op
            face_value = bonds.get_bond_details(bond_id).face_value
            bonds.purchase_bond(investor, bond_id, amount, max(face_value * amount + extra, 0))
        elif kind == "claim":
            _, investor, bond_id = op
            bonds.claim_coupon(investor, bond_id)
        else:
            bonds.advance_time(bonds.current_time + timedelta(days=op[1]))
    except LedgerError:
        return False
    return True


def run_session(ops: List[Tuple], check_atomicity: bool = False) -> Tuple[BondLedger, List[bool]]:
    """
    Apply ops to a fresh session.

    With check_atomicity, asserts after every rejected operation that the
    ledger is exactly as it was before the attempt.
    """
    bonds = new_session()
    results = []
    for op in ops:
        before = snapshot(bonds) if check_atomicity else None
        ok = apply(bonds, op)
        if check_atomicity and not ok:
            assert snapshot(bonds) == before, f"rejected {op} changed the ledger"
        results.append(ok)
    return bonds, results
