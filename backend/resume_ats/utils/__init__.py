"""Shared utilities: clock, identifiers, logging and invariant checks."""
