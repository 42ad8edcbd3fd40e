"""
metabond - Bond Issuance and Settlement Ledger

Off-chain bond ledger: issue bonds, buy them on the primary market and
claim periodic coupons, with every operation settled atomically on a
double-entry ledger.

Usage:
    from datetime import datetime
    from metabond import BondLedger, BondLedgerConfig

    bonds = BondLedger(BondLedgerConfig(initial_time=datetime(2025, 1, 1)))
    bonds.deposit("alice", 10_000)

    bond_id = bonds.issue_bond(
        "acme", "ACME 5% 2026",
        face_value=100, maturity_date=datetime(2026, 1, 1),
        coupon_rate=500, total_supply=1000,
    )
    bonds.purchase_bond("alice", bond_id, amount=10, payment=1000)
    bonds.get_investment_details("alice", bond_id)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    UnitRecordChange,
    ExecuteResult,
    LedgerError,
    ValidationError,
    InsufficientPaymentError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    StaleStateError,
    DuplicateTransaction,
    primary_market_transfer_rule,
    native_currency,
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_BOND,
    BASIS_POINTS,
    MONTHS_PER_YEAR,
    COUPON_PERIOD,
    COUPON_PERIOD_SECONDS,
)

# Ledger
from .ledger import Ledger

# Bonds
from .units.bond import (
    BondDetails,
    InvestmentDetails,
    bond_symbol,
    create_bond_unit,
    validate_issuance,
    purchase_cost,
    compute_annual_coupon,
    months_elapsed,
    compute_coupon_payment,
    compute_issuance,
    compute_purchase,
    compute_coupon_claim,
    load_bond_details,
    load_investment_details,
    load_investors,
)

# Notifications
from .events import BondIssued, BondPurchased, CouponClaimed, EventLog

# Bond ledger
from .bond_ledger import BondLedger, BondLedgerConfig

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'UnitRecordChange', 'ExecuteResult',
    'LedgerError', 'ValidationError', 'InsufficientPaymentError', 'InsufficientFunds',
    'BalanceConstraintViolation', 'TransferRuleViolation', 'UnitNotRegistered',
    'WalletNotRegistered', 'StaleStateError', 'DuplicateTransaction',
    'primary_market_transfer_rule', 'native_currency',
    'SYSTEM_WALLET', 'UNIT_TYPE_CASH', 'UNIT_TYPE_BOND',
    'BASIS_POINTS', 'MONTHS_PER_YEAR', 'COUPON_PERIOD', 'COUPON_PERIOD_SECONDS',
    # Ledger
    'Ledger',
    # Bonds
    'BondDetails', 'InvestmentDetails', 'bond_symbol', 'create_bond_unit',
    'validate_issuance', 'purchase_cost', 'compute_annual_coupon', 'months_elapsed',
    'compute_coupon_payment', 'compute_issuance', 'compute_purchase', 'compute_coupon_claim',
    'load_bond_details', 'load_investment_details', 'load_investors',
    # Notifications
    'BondIssued', 'BondPurchased', 'CouponClaimed', 'EventLog',
    # Bond ledger
    'BondLedger', 'BondLedgerConfig',
]

__version__ = '1.0.0'
