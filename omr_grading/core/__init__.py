"""
Package Core: analysis and grading logic of the OMR interview scoring tool.
Includes:
- SheetAnalyzer: raw detections -> SheetResult.
- DuplicateDetector: flags sheets sharing a combined id.
- AnalysisCache: round-scoped memoization of loads and sheet analysis.
- GradingAggregator: per-student grades, ranking and round summary.
"""

from .round_context import RoundContext
from .sheet_analyzer import SheetAnalyzer, BarcodeSemantics, DefaultBarcodeSemantics
from .duplicate_detector import DuplicateDetector
from .analysis_cache import AnalysisCache, CacheSlot, SlotState
from .grading_aggregator import GradingAggregator

__all__ = [
    'RoundContext',
    'SheetAnalyzer', 'BarcodeSemantics', 'DefaultBarcodeSemantics',
    'DuplicateDetector',
    'AnalysisCache', 'CacheSlot', 'SlotState',
    'GradingAggregator',
]
