"""Read-only selectors."""

from approval_kernel.selectors.approval_selector import ApprovalFilter, ApprovalSelector

__all__ = ["ApprovalFilter", "ApprovalSelector"]
