"""
Approval Kernel

A multi-level approval engine for financial requests with:
- One- or two-level sequential sign-off per request kind
- Role-gated decisions via an injected permission oracle
- Confidentiality overrides based on the requester's position
- Auto-approval for trusted positions with a uniform audit trail
- Per-request serialization of every state change
"""

__version__ = "0.1.0"
