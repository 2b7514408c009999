"""Reconciliation of declarative deployments onto Kubernetes/OpenShift.

The pipeline for each component is: secrets, render, apply, wait for
readiness, configure, report.
"""

from shipyard.deploy.reconciler import Reconciler
from shipyard.deploy.renderer import ManifestRenderer, RenderedComponent
from shipyard.deploy.reporter import Reporter

__all__ = ["ManifestRenderer", "Reconciler", "RenderedComponent", "Reporter"]
