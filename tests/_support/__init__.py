"""Shared test helpers (not collected)."""
