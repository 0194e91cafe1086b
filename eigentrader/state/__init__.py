"""
State package.

Signed-inference tracking and the per-iteration trading diary.
"""

from eigentrader.state.diary import DiaryEntry, TradingDiary, performance_summary, was_executed
from eigentrader.state.recorder import InferenceRecorder
from eigentrader.state.verification_tracker import InferenceRecord, VerificationTracker

__all__ = [
    "DiaryEntry",
    "TradingDiary",
    "performance_summary",
    "was_executed",
    "InferenceRecorder",
    "InferenceRecord",
    "VerificationTracker",
]
