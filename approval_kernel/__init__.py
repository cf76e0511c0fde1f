"""
Approval Kernel - multi-level sequential approval workflow.

A configurable chain of ordered approval levels, each bound to a specific
approver, gating business-entity transitions:
- Per-entity-type chain templates with wholesale level replacement
- Snapshotted level decisions per approval request
- Strict sequential gating, rejection short-circuit
- Append-only history and rejection commentary
- Completion events for entity-specific handlers
"""

__version__ = "0.1.0"
