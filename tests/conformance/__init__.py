"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the bond ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_conservation.py - Double entry and bond supply invariants
2. test_atomicity.py - All-or-nothing bond operations
3. test_idempotency.py - Duplicate execution handling and replay

These tests use hypothesis for property-based testing.
"""
