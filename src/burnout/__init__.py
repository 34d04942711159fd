"""
Burnout Module - Response-time baselines, fatigue scoring and break advice.

Components:
- baseline: Welford response-time baseline per difficulty bucket
- fatigue: Weighted fatigue score and trend analysis
- breaks: Break triggers, dismissals and recovery effectiveness
"""

from src.burnout.baseline import (
    BaselineConfig,
    BaselineSnapshot,
    ResponseThresholds,
    ResponseTimeBaseline,
    RunningStats,
)
from src.burnout.breaks import (
    AdvisorConfig,
    AdvisorState,
    BreakAdvisor,
    BreakEvent,
    BreakSuggestion,
    BreakTrigger,
    complete_recovery_protocol,
)
from src.burnout.fatigue import (
    FatigueConfig,
    FatigueIndicators,
    FatigueMonitor,
    FatigueWeights,
    TrendAnalysis,
    TrendDirection,
    analyze_trend,
)

__all__ = [
    # Baseline
    "BaselineConfig",
    "BaselineSnapshot",
    "ResponseThresholds",
    "ResponseTimeBaseline",
    "RunningStats",
    # Fatigue
    "FatigueConfig",
    "FatigueIndicators",
    "FatigueMonitor",
    "FatigueWeights",
    "TrendAnalysis",
    "TrendDirection",
    "analyze_trend",
    # Breaks
    "AdvisorConfig",
    "AdvisorState",
    "BreakAdvisor",
    "BreakEvent",
    "BreakSuggestion",
    "BreakTrigger",
    "complete_recovery_protocol",
]
