"""Shipyard CLI commands."""
