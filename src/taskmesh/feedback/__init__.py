"""Feedback: rolling agent statistics and execution insights."""

from taskmesh.feedback.tracker import (
    AgentInsight,
    FeedbackTracker,
    Insights,
    rolling_mean,
    success_rate,
    summarize_history,
)

__all__ = [
    "AgentInsight",
    "FeedbackTracker",
    "Insights",
    "rolling_mean",
    "success_rate",
    "summarize_history",
]
