"""Payroll run lifecycle: review workflow, anomaly detection and resolution."""

__version__ = "0.1.0"
