"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.approval_selector import (
    ApprovalDetailView,
    ApprovalSelector,
    ApprovalSummaryView,
    ChainLevelView,
    ChainTemplateView,
    CommentView,
    HistoryView,
    LevelDecisionView,
    Page,
)

__all__ = [
    "ApprovalSelector",
    "ApprovalDetailView",
    "ApprovalSummaryView",
    "ChainLevelView",
    "ChainTemplateView",
    "CommentView",
    "HistoryView",
    "LevelDecisionView",
    "Page",
]
