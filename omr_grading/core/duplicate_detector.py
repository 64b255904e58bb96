from typing import Dict, Iterable, List, Mapping
from omr_grading.core.models import SheetResult
from omr_grading.utils import app_logger, OMRUtils


class DuplicateDetector:
    """
    Finds sheets that share a combined id (student id + interview id) and
    flags them.

    Flagging appends to `error_message`, so it must run exactly once on a
    freshly analyzed result set. Re-running it on results that were already
    flagged appends the message a second time; callers regenerate sheets with
    SheetAnalyzer before detecting again.
    """

    @staticmethod
    def detect_duplicates(results: Iterable[SheetResult]) -> Dict[str, List[SheetResult]]:
        """
        Group sheets by combined id, keeping only groups of two or more.
        Sheets without a combined id are ignored.
        """
        groups: Dict[str, List[SheetResult]] = {}
        for result in results:
            combined_id = result.combined_id
            if combined_id:
                groups.setdefault(combined_id, []).append(result)

        return {key: members for key, members in groups.items() if len(members) > 1}

    @staticmethod
    def apply_duplicates(results: Iterable[SheetResult], groups: Mapping[str, List[SheetResult]]) -> int:
        """
        Flag every result whose combined id is a duplicate group key.

        Returns:
            int: Number of sheets flagged.
        """
        affected = 0
        for result in results:
            combined_id = result.combined_id
            if not combined_id or combined_id not in groups:
                continue

            result.is_duplicate = True
            # has_errors stays untouched: the flag is layered on top of analysis errors
            result.error_message = OMRUtils.append_message(result.error_message, f"duplicate combined id ({len(groups[combined_id])})")
            affected += 1

        return affected

    @staticmethod
    def detect_and_apply(results: List[SheetResult]) -> Dict[str, List[SheetResult]]:
        """Detect and immediately flag duplicates on a fresh result set."""
        groups = DuplicateDetector.detect_duplicates(results)
        affected = DuplicateDetector.apply_duplicates(results, groups)

        if groups:
            app_logger.warning(f"Duplicate combined ids: {len(groups)} groups, {affected} sheets flagged.")
        return groups
