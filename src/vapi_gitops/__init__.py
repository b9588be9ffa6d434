"""Vapi GitOps: reconcile declarative resource files against the Vapi platform."""

__version__ = "0.1.0"
