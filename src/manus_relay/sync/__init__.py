"""Reconciliation of local task state with the upstream API."""
