"""Polling and reconciliation engine."""
