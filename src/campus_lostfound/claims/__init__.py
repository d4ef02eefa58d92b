"""Claim submission and adjudication."""

from .workflow import AuditContext, ClaimPage, ClaimWorkflow

__all__ = ["AuditContext", "ClaimPage", "ClaimWorkflow"]
