"""Shipyard command-line interface."""
