"""Shared utilities for Shipyard: errors, logging and terminal output."""
