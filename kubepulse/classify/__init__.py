"""Failure classification for kubepulse.

Exposes:
    classify         -- map a raw failure to a ClassifiedError (total, never raises).
    remediation_hint -- short suggestion text per FailureKind for host UIs.
"""

from kubepulse.classify.classifier import classify
from kubepulse.classify.hints import remediation_hint

__all__ = ["classify", "remediation_hint"]
