"""Pydantic models for deployment descriptions, run settings and state."""
