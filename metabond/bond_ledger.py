"""
bond_ledger.py - The Bond Ledger

BondLedger is the public surface of the package: issue bonds, buy them,
claim coupons, and read bond and investment snapshots. It owns exactly one
Ledger (no module-level state), so tests and services can run any number
of independent bond ledgers side by side.

Each mutating call:
    1. takes the lock for the bond it touches (issuance takes its own lock)
    2. asks a pure function in units.bond for a PendingTransaction
    3. commits it; the Ledger applies state, records, moves and the caller's
       new wallet together or not at all
    4. emits exactly one notification

Funding model:
    The contract wallet plays the part of the contract's own balance.
    Purchases pass through it (payment in, proceeds and refund out);
    coupons are paid out of it, so someone must fund_treasury() first.
    A claim the treasury cannot cover is rejected with InsufficientFunds.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import itertools
import threading
from typing import Any, Dict, List, Optional

from .core import (
    Move, Transaction, TransactionOrigin, OriginType,
    ValidationError, build_transaction, native_currency,
    SYSTEM_WALLET,
)
from .events import BondIssued, BondPurchased, CouponClaimed, EventLog
from .ledger import Ledger
from .units.bond import (
    BondDetails, InvestmentDetails,
    bond_symbol, compute_issuance, compute_purchase, compute_coupon_claim,
    load_bond_details, load_investment_details, load_investors,
)


@dataclass(frozen=True)
class BondLedgerConfig:
    """Deployment settings for a BondLedger."""
    name: str = "metabond"
    currency: str = "ETH"
    currency_name: str = "Ether"
    contract_wallet: str = "metabond"
    initial_time: Optional[datetime] = None
    verbose: bool = True


class BondLedger:
    """
    Bond issuance, primary purchase and coupon claims over a settlement Ledger.

    Callers are identified by opaque account strings. Accounts are opened
    by the first call that commits; a rejected call leaves no account
    behind. SYSTEM_WALLET and the contract wallet are reserved.

    Example:
        bonds = BondLedger(BondLedgerConfig(initial_time=datetime(2025, 1, 1), verbose=False))
        bonds.deposit("alice", 10_000)
        bond_id = bonds.issue_bond("acme", "ACME 5% 2026", 100,
                                   datetime(2026, 1, 1), 500, 1000)
        bonds.purchase_bond("alice", bond_id, 10, 1000)
    """

    def __init__(self, config: Optional[BondLedgerConfig] = None):
        self.config = config or BondLedgerConfig()
        self.currency = self.config.currency
        self.contract_wallet = self.config.contract_wallet
        self.verbose = self.config.verbose

        self.ledger = Ledger(
            self.config.name,
            initial_time=self.config.initial_time,
            verbose=self.verbose,
        )
        self.ledger.register_unit(native_currency(self.currency, self.config.currency_name))
        self.ledger.register_wallet(self.contract_wallet)

        self.events = EventLog()
        self._total_bonds = 0
        self._issuance_lock = threading.Lock()
        self._bond_locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._bond_locks_guard = threading.Lock()
        self._nonce = itertools.count(1)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _lock_for(self, bond_id: int, field: str, reason: str) -> threading.Lock:
        """
        Lock of an issued bond.

        An id that is not an integer fails on bond_id; one that was never
        issued raises ValidationError(field, reason). Neither gets a lock.
        """
        if isinstance(bond_id, bool) or not isinstance(bond_id, int):
            raise ValidationError("bond_id", "must be an integer")
        if not 1 <= bond_id <= self._total_bonds:
            raise ValidationError(field, reason)
        with self._bond_locks_guard:
            return self._bond_locks[bond_id]

    def _account(self, account: str, field: str = "caller") -> str:
        """Validate a caller identity; the wallet is opened by the commit."""
        if not isinstance(account, str) or not account.strip():
            raise ValidationError(field, "account id cannot be empty")
        if account in (SYSTEM_WALLET, self.contract_wallet):
            raise ValidationError(field, f"{account} is a reserved account")
        return account

    def _announce(self, event) -> None:
        self.events.emit(event)
        if self.verbose:
            print(f"📣 {event}")

    # ========================================================================
    # VALUE LAYER
    # ========================================================================

    def open_account(self, account: str) -> str:
        """Register an account; a no-op if it already exists."""
        return self.ledger.ensure_wallet(self._account(account, "account"))

    def deposit(self, account: str, amount: int) -> Transaction:
        """
        Bring amount of native currency into the ledger for account.

        Raises:
            ValidationError: empty/reserved account or non-positive amount
        """
        self._account(account, "account")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount", "must be a positive integer")
        pending = build_transaction(
            self.ledger,
            [Move(Decimal(amount), self.currency, SYSTEM_WALLET, account,
                  f"deposit_{next(self._nonce)}")],
            origin=TransactionOrigin(OriginType.SYSTEM, account, self.currency, "DEPOSIT"),
        )
        return self.ledger.commit(pending, wallets_to_open=(account,))

    def fund_treasury(self, caller: str, amount: int) -> Transaction:
        """
        Move amount of the caller's currency into the contract wallet.

        This is the liquidity coupons are paid from.

        Raises:
            ValidationError: bad caller or non-positive amount
            InsufficientFunds: caller's balance is below amount
        """
        self._account(caller)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount", "must be a positive integer")
        pending = build_transaction(
            self.ledger,
            [Move(Decimal(amount), self.currency, caller, self.contract_wallet,
                  f"treasury_funding_{next(self._nonce)}")],
            origin=TransactionOrigin(OriginType.USER_ACTION, caller, self.currency, "FUND_TREASURY"),
        )
        return self.ledger.commit(pending, wallets_to_open=(caller,))

    def balance_of(self, account: str) -> int:
        """Native currency held by an account (0 for an unknown account)."""
        if not self.ledger.is_registered(account):
            return 0
        return int(self.ledger.get_balance(account, self.currency))

    def treasury_balance(self) -> int:
        """Native currency held by the contract wallet."""
        return int(self.ledger.get_balance(self.contract_wallet, self.currency))

    def advance_time(self, new_time: datetime) -> None:
        """Move the ledger clock forward."""
        self.ledger.advance_time(new_time)

    @property
    def current_time(self) -> datetime:
        return self.ledger.current_time

    @property
    def transactions(self) -> List[Transaction]:
        return list(self.ledger.transaction_log)

    # ========================================================================
    # BOND OPERATIONS
    # ========================================================================

    def issue_bond(
        self,
        caller: str,
        name: str,
        face_value: int,
        maturity_date: datetime,
        coupon_rate: int,
        total_supply: int,
    ) -> int:
        """
        Issue a new bond with the caller as issuer and return its id.

        Raises:
            ValidationError: face_value <= 0, maturity_date not in the future,
                             coupon_rate outside 1..10000, total_supply <= 0
        """
        issuer = self._account(caller)
        with self._issuance_lock:
            bond_id = self._total_bonds + 1
            pending = compute_issuance(
                self.ledger, bond_id, issuer, name, face_value, maturity_date,
                coupon_rate, total_supply, self.currency, self.contract_wallet,
            )
            tx = self.ledger.commit(pending, wallets_to_open=(issuer,))
            self._total_bonds = bond_id
        self._announce(BondIssued(bond_id, issuer, name, face_value, total_supply, tx.exec_id))
        return bond_id

    def purchase_bond(self, caller: str, bond_id: int, amount: int, payment: int) -> None:
        """
        Buy amount units of a bond, attaching payment.

        The issuer receives face_value * amount and any excess payment is
        refunded to the caller in the same transaction.

        Raises:
            ValidationError: unknown/inactive/matured bond, bad amount
            InsufficientPaymentError: payment below face_value * amount
            InsufficientFunds: caller cannot cover the attached payment
        """
        investor = self._account(caller)
        with self._lock_for(bond_id, "bond_id", f"unknown bond {bond_id}"):
            pending = compute_purchase(self.ledger, bond_id, investor, amount, payment)
            tx = self.ledger.commit(pending, wallets_to_open=(investor,))
            self._announce(BondPurchased(bond_id, investor, amount, tx.execution_time, tx.exec_id))

    def claim_coupon(self, caller: str, bond_id: int) -> int:
        """
        Claim the coupon accrued since the caller's last claim; return it.

        Raises:
            ValidationError: no investment, bond inactive, bond matured,
                             claim period not reached
            InsufficientFunds: the treasury cannot cover the coupon
        """
        investor = self._account(caller)
        with self._lock_for(bond_id, "investor", "no investment"):
            pending, coupon = compute_coupon_claim(self.ledger, bond_id, investor)
            tx = self.ledger.commit(pending, wallets_to_open=(investor,))
            self._announce(CouponClaimed(bond_id, investor, coupon, tx.exec_id))
        return coupon

    # ========================================================================
    # READS
    # ========================================================================

    def get_bond_details(self, bond_id: int) -> BondDetails:
        """Snapshot of a bond; zero-valued if bond_id was never issued."""
        return load_bond_details(self.ledger, bond_id)

    def get_investment_details(self, investor: str, bond_id: int) -> InvestmentDetails:
        """Snapshot of an investment; zero-valued if there is none."""
        return load_investment_details(self.ledger, investor, bond_id)

    def get_total_bonds(self) -> int:
        """Number of bonds ever issued."""
        return self._total_bonds

    def get_bond_investors(self, bond_id: int) -> List[str]:
        """Accounts that ever bought the bond, in order of first purchase."""
        return load_investors(self.ledger, bond_id)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check double entry for every unit and the supply invariants of
        every bond.

        Returns:
            Dict with 'valid' and a list of 'discrepancies'.
        """
        report = self.ledger.verify_double_entry()
        discrepancies = list(report['discrepancies'])
        for bond_id in range(1, self._total_bonds + 1):
            symbol = bond_symbol(bond_id)
            state = self.ledger.get_unit_state(symbol)
            records = {
                investor: self.ledger.get_unit_record(symbol, investor)
                for investor in self.ledger.list_unit_records(symbol)
            }
            held = sum(r['amount'] for r in records.values())
            sold = state['total_supply'] - state['available_supply']
            unsold = self.ledger.get_balance(self.contract_wallet, symbol)
            if held != sold:
                discrepancies.append({'unit': symbol, 'held': held, 'sold': sold})
            if unsold != state['available_supply']:
                discrepancies.append({'unit': symbol, 'custodian': unsold,
                                      'available_supply': state['available_supply']})
            for investor, record in records.items():
                if record['last_coupon_claim'] < record['purchase_date']:
                    discrepancies.append({'unit': symbol, 'investor': investor,
                                          'error': 'claim before purchase'})
                if self.ledger.get_balance(investor, symbol) != record['amount']:
                    discrepancies.append({'unit': symbol, 'investor': investor,
                                          'error': 'token balance mismatch'})
        return {'valid': not discrepancies, 'discrepancies': discrepancies}
