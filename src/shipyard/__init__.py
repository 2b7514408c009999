"""Shipyard: declarative deployment reconciler for OpenShift application stacks."""

__version__ = "0.1.0"
