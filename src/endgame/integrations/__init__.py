"""Integrations with external venues."""
