"""
bond.py - Bond Unit: Issuance, Primary Purchase and Coupon Claims

A Bond has:
    issuer, name, face_value, maturity_date, coupon_rate (basis points),
    total_supply, available_supply, is_active, and one Investment record
    per investor: amount, purchase_date, last_coupon_claim.

The bond's terms live in the state of a BOND unit ("BOND-<id>"); each
investment is a record of that unit keyed by investor, so touching one
investor never copies the others. The unit is also a token: issuance
mints total_supply into the custodian wallet and purchases allocate tokens
from it, so ledger balances mirror the investment records.

Every function here is pure: it reads a LedgerView, validates, and returns
a PendingTransaction for the Ledger to commit. Nothing is mutated here.

Coupon arithmetic (integers, order matters):
    annual  = amount * face_value * coupon_rate // 10000
    months  = elapsed_seconds // (30 days)
    payment = annual * months // 12
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, UnitRecordChange,
    TransactionOrigin, OriginType, ValidationError, InsufficientPaymentError,
    build_transaction, primary_market_transfer_rule, _freeze_state,
    UNIT_TYPE_BOND, SYSTEM_WALLET,
    BASIS_POINTS, MONTHS_PER_YEAR, COUPON_PERIOD_SECONDS,
)


BOND_SYMBOL_PREFIX = "BOND-"


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class BondDetails:
    """Read-only snapshot of a bond. Zero-valued for an id never issued."""
    issuer: str
    name: str
    face_value: int
    maturity_date: Optional[datetime]
    coupon_rate: int
    total_supply: int
    available_supply: int
    is_active: bool

    @property
    def exists(self) -> bool:
        return bool(self.issuer)


@dataclass(frozen=True, slots=True)
class InvestmentDetails:
    """Read-only snapshot of one investor's position in one bond."""
    amount: int
    purchase_date: Optional[datetime]
    last_coupon_claim: Optional[datetime]


EMPTY_BOND = BondDetails("", "", 0, None, 0, 0, 0, False)
EMPTY_INVESTMENT = InvestmentDetails(0, None, None)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def bond_symbol(bond_id: int) -> str:
    """Ledger unit symbol for a bond id."""
    return f"{BOND_SYMBOL_PREFIX}{bond_id}"


def _is_bond_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_int(field: str, value) -> int:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer, got {type(value).__name__}")
    return value


def _elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end; sub-second remainders are dropped."""
    delta = end - start
    return delta.days * 86_400 + delta.seconds


def purchase_cost(face_value: int, amount: int) -> int:
    """Exact price of amount units at face value."""
    return face_value * amount


def compute_annual_coupon(amount: int, face_value: int, coupon_rate: int) -> int:
    """
    Yearly coupon on a holding.

    The full numerator is formed before dividing; computing the rate as a
    percentage first would round differently.
    """
    return amount * face_value * coupon_rate // BASIS_POINTS


def months_elapsed(elapsed_seconds: int) -> int:
    """Number of complete 30-day periods."""
    return elapsed_seconds // COUPON_PERIOD_SECONDS


def compute_coupon_payment(
    amount: int,
    face_value: int,
    coupon_rate: int,
    elapsed_seconds: int,
) -> int:
    """Coupon owed for elapsed_seconds of holding, floored at each step."""
    annual = compute_annual_coupon(amount, face_value, coupon_rate)
    return annual * months_elapsed(elapsed_seconds) // MONTHS_PER_YEAR


def validate_issuance(
    now: datetime,
    name: str,
    face_value: int,
    maturity_date: datetime,
    coupon_rate: int,
    total_supply: int,
) -> None:
    """
    Check issuance parameters.

    Raises:
        ValidationError: naming the first offending field
    """
    if not isinstance(name, str):
        raise ValidationError("name", "must be a string")
    if _require_int("face_value", face_value) <= 0:
        raise ValidationError("face_value", "must be positive")
    if not isinstance(maturity_date, datetime):
        raise ValidationError("maturity_date", "must be a datetime")
    if (maturity_date.tzinfo is None) != (now.tzinfo is None):
        raise ValidationError("maturity_date", "must match the ledger clock's timezone")
    if maturity_date <= now:
        raise ValidationError("maturity_date", "must be in the future")
    if not 1 <= _require_int("coupon_rate", coupon_rate) <= BASIS_POINTS:
        raise ValidationError("coupon_rate", f"must be between 1 and {BASIS_POINTS} basis points")
    if _require_int("total_supply", total_supply) <= 0:
        raise ValidationError("total_supply", "must be positive")


# =============================================================================
# UNIT CREATION
# =============================================================================

def create_bond_unit(
    bond_id: int,
    issuer: str,
    name: str,
    face_value: int,
    maturity_date: datetime,
    coupon_rate: int,
    total_supply: int,
    issue_date: datetime,
    currency: str,
    custodian_wallet: str,
) -> Unit:
    """Create the unit holding a newly issued bond's terms and supply."""
    if not issuer or not issuer.strip():
        raise ValueError("issuer cannot be empty")
    if not custodian_wallet or not custodian_wallet.strip():
        raise ValueError("custodian_wallet cannot be empty")

    return Unit(
        symbol=bond_symbol(bond_id),
        name=name,
        unit_type=UNIT_TYPE_BOND,
        min_balance=Decimal("0"),
        max_balance=Decimal("Infinity"),
        decimal_places=0,
        transfer_rule=primary_market_transfer_rule,
        _frozen_state=_freeze_state({
            'bond_id': bond_id,
            'issuer': issuer,
            'name': name,
            'face_value': face_value,
            'maturity_date': maturity_date,
            'coupon_rate': coupon_rate,
            'total_supply': total_supply,
            'available_supply': total_supply,
            'is_active': True,
            'issue_date': issue_date,
            'currency': currency,
            'custodian_wallet': custodian_wallet,
        })
    )


# =============================================================================
# OPERATIONS
# =============================================================================

def compute_issuance(
    view: LedgerView,
    bond_id: int,
    issuer: str,
    name: str,
    face_value: int,
    maturity_date: datetime,
    coupon_rate: int,
    total_supply: int,
    currency: str,
    custodian_wallet: str,
) -> PendingTransaction:
    """
    Validate issuance terms and build the transaction that creates the bond.

    The bond unit is created and its whole supply minted into the custodian.

    Raises:
        ValidationError: If any term is out of range
    """
    now = view.current_time
    validate_issuance(now, name, face_value, maturity_date, coupon_rate, total_supply)

    unit = create_bond_unit(
        bond_id=bond_id,
        issuer=issuer,
        name=name,
        face_value=face_value,
        maturity_date=maturity_date,
        coupon_rate=coupon_rate,
        total_supply=total_supply,
        issue_date=now,
        currency=currency,
        custodian_wallet=custodian_wallet,
    )
    moves = [Move(
        quantity=Decimal(total_supply),
        unit_symbol=unit.symbol,
        source=SYSTEM_WALLET,
        dest=custodian_wallet,
        contract_id=f'bond_{bond_id}_issuance',
    )]
    origin = TransactionOrigin(OriginType.USER_ACTION, issuer, unit.symbol, "ISSUE")
    return build_transaction(view, moves, origin=origin, units_to_create=(unit,))


def _load_bond_state(view: LedgerView, bond_id: int) -> dict:
    """State of an issued bond, or ValidationError for an unknown id."""
    if not _is_bond_id(bond_id):
        raise ValidationError("bond_id", "must be an integer")
    symbol = bond_symbol(bond_id)
    if not view.has_unit(symbol):
        raise ValidationError("bond_id", f"unknown bond {bond_id}")
    return view.get_unit_state(symbol)


def compute_purchase(
    view: LedgerView,
    bond_id: int,
    investor: str,
    amount: int,
    payment: int,
) -> PendingTransaction:
    """
    Validate a primary purchase and build its transaction.

    State change: available_supply decreases by amount. Record change: the
    investor's record is created on first purchase or its amount increased.

    Moves, settled in this order:
        1. amount bond tokens: custodian -> investor
        2. payment: investor -> custodian (the attached value)
        3. cost: custodian -> issuer
        4. payment - cost: custodian -> investor (refund, only if positive)

    Raises:
        ValidationError: unknown or inactive bond, bad amount, matured bond
        InsufficientPaymentError: payment below face_value * amount
    """
    state = _load_bond_state(view, bond_id)
    symbol = bond_symbol(bond_id)
    now = view.current_time

    if not state['is_active']:
        raise ValidationError("bond_id", "bond not active")
    if _require_int("amount", amount) <= 0:
        raise ValidationError("amount", "must be positive")
    if amount > state['available_supply']:
        raise ValidationError(
            "amount", f"exceeds available supply {state['available_supply']}"
        )
    if now >= state['maturity_date']:
        raise ValidationError("maturity_date", "bond matured")
    _require_int("payment", payment)
    cost = purchase_cost(state['face_value'], amount)
    if payment < cost:
        raise InsufficientPaymentError(cost, payment)

    new_state = {**state, 'available_supply': state['available_supply'] - amount}
    existing = view.get_unit_record(symbol, investor)
    if existing is None:
        record = {'amount': amount, 'purchase_date': now, 'last_coupon_claim': now}
    else:
        record = {**existing, 'amount': existing['amount'] + amount}

    currency = state['currency']
    custodian = state['custodian_wallet']
    moves = [
        Move(Decimal(amount), symbol, custodian, investor, f'bond_{bond_id}_allocation'),
        Move(Decimal(payment), currency, investor, custodian, f'bond_{bond_id}_payment'),
        Move(Decimal(cost), currency, custodian, state['issuer'], f'bond_{bond_id}_proceeds'),
    ]
    excess = payment - cost
    if excess > 0:
        moves.append(
            Move(Decimal(excess), currency, custodian, investor, f'bond_{bond_id}_refund')
        )

    origin = TransactionOrigin(OriginType.USER_ACTION, investor, symbol, "PURCHASE")
    changes = [UnitStateChange(unit=symbol, old_state=state, new_state=new_state)]
    records = [UnitRecordChange(symbol, investor, existing, record)]
    return build_transaction(view, moves, changes, origin=origin, record_changes=records)


def compute_coupon_claim(
    view: LedgerView,
    bond_id: int,
    investor: str,
) -> Tuple[PendingTransaction, int]:
    """
    Validate a coupon claim and build its transaction.

    last_coupon_claim is reset to the claim time, not advanced by whole
    periods: any part-month beyond the last full 30 days is forfeited.
    The coupon is paid from the custodian wallet, which must hold it.

    Returns:
        (pending transaction, coupon amount). A zero coupon produces a
        transaction with the record change only.

    Raises:
        ValidationError: no investment, bond inactive, bond matured, or
                         claim period not reached (checked in that order)
    """
    if not _is_bond_id(bond_id):
        raise ValidationError("bond_id", "must be an integer")
    symbol = bond_symbol(bond_id)
    investment = view.get_unit_record(symbol, investor) if view.has_unit(symbol) else None
    now = view.current_time

    if investment is None or investment['amount'] <= 0:
        raise ValidationError("investor", "no investment")
    state = view.get_unit_state(symbol)
    if not state['is_active']:
        raise ValidationError("bond_id", "bond inactive")
    if now >= state['maturity_date']:
        raise ValidationError("maturity_date", "bond matured")
    elapsed = _elapsed_seconds(investment['last_coupon_claim'], now)
    if elapsed < COUPON_PERIOD_SECONDS:
        raise ValidationError("last_coupon_claim", "claim period not reached")

    coupon = compute_coupon_payment(
        investment['amount'], state['face_value'], state['coupon_rate'], elapsed
    )

    record = {**investment, 'last_coupon_claim': now}

    moves: List[Move] = []
    if coupon > 0:
        moves.append(Move(
            Decimal(coupon), state['currency'], state['custodian_wallet'], investor,
            f'bond_{bond_id}_coupon',
        ))
    origin = TransactionOrigin(OriginType.USER_ACTION, investor, symbol, "COUPON")
    records = [UnitRecordChange(symbol, investor, investment, record)]
    return build_transaction(view, moves, origin=origin, record_changes=records), coupon


# =============================================================================
# READS
# =============================================================================

def load_bond_details(view: LedgerView, bond_id: int) -> BondDetails:
    """Snapshot of a bond; EMPTY_BOND if it was never issued."""
    symbol = bond_symbol(bond_id)
    if not _is_bond_id(bond_id) or not view.has_unit(symbol):
        return EMPTY_BOND
    state = view.get_unit_state(symbol)
    return BondDetails(
        issuer=state['issuer'],
        name=state['name'],
        face_value=state['face_value'],
        maturity_date=state['maturity_date'],
        coupon_rate=state['coupon_rate'],
        total_supply=state['total_supply'],
        available_supply=state['available_supply'],
        is_active=state['is_active'],
    )


def load_investment_details(view: LedgerView, investor: str, bond_id: int) -> InvestmentDetails:
    """Snapshot of an investment; EMPTY_INVESTMENT if there is none."""
    symbol = bond_symbol(bond_id)
    if not _is_bond_id(bond_id) or not view.has_unit(symbol):
        return EMPTY_INVESTMENT
    record = view.get_unit_record(symbol, investor)
    if record is None:
        return EMPTY_INVESTMENT
    return InvestmentDetails(
        amount=record['amount'],
        purchase_date=record['purchase_date'],
        last_coupon_claim=record['last_coupon_claim'],
    )


def load_investors(view: LedgerView, bond_id: int) -> List[str]:
    """Investors who ever bought the bond, in order of first purchase."""
    symbol = bond_symbol(bond_id)
    if not _is_bond_id(bond_id) or not view.has_unit(symbol):
        return []
    return view.list_unit_records(symbol)
