"""Instrument units held by the ledger."""
