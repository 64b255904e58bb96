import threading
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional
import numpy as np
from omr_grading.core.analysis_cache import AnalysisCache, CacheSlot, SlotState
from omr_grading.core.constants import (
    QUESTIONS_COUNT,
    SIMPLE_ERROR_MAX_INTERVIEWERS,
    SUMMARY_LIST_LIMIT,
)
from omr_grading.core.models import (
    GradingSnapshot,
    RoundSummary,
    ScoringRule,
    SheetResult,
    StudentGrade,
    StudentRegistry,
)
from omr_grading.utils import app_logger, OMRUtils


class GradingAggregator:
    """
    Grading logic on top of AnalysisCache:
    1. Aggregate each student's sheets into one StudentGrade.
    2. Rank students within each exam type (competition ranking).
    3. Reconcile graded students with the registry and build the RoundSummary.
    4. Serve single students and seeded samples without a full-round compute.

    Uses the same round-scoped memoization as AnalysisCache, one level up,
    with its own lock.
    """

    NOT_IN_REGISTRY = "not in registry"

    def __init__(self, cache: AnalysisCache):
        self.cache = cache
        self.context = cache.context

        self._gate = threading.Lock()
        self._round_key: Optional[str] = None
        self._snapshot: CacheSlot[GradingSnapshot] = CacheSlot("grading_snapshot")
        self._by_student_id: CacheSlot[Dict[str, StudentGrade]] = CacheSlot("grades_by_student_id")
        app_logger.debug("GradingAggregator initialized.")

    # --- ROUND / EPOCH HANDLING ---

    def _sync_round_locked(self) -> str:
        key = self.context.current_round
        if key != self._round_key:
            if self._round_key is not None:
                app_logger.info(f"GradingAggregator: round changed '{self._round_key}' -> '{key}', grades cleared.")
            self._snapshot.clear()
            self._by_student_id.clear()
            self._round_key = key
        return key

    def invalidate(self) -> None:
        with self._gate:
            self._snapshot.clear()
            self._by_student_id.clear()
            self._round_key = self.context.current_round
        app_logger.info(f"GradingAggregator invalidated (round '{self._round_key}').")

    @property
    def snapshot_state(self) -> SlotState:
        with self._gate:
            return self._snapshot.state

    # --- PER-STUDENT AGGREGATION ---

    @staticmethod
    def compute_for_student(student_id: str,
                            sheets: List[SheetResult],
                            registry: StudentRegistry,
                            scoring_rule: ScoringRule) -> StudentGrade:
        """
        Aggregate one student's sheets (one sheet per interviewer).

        Per question: mean of the scored value over the sheets that carry a
        marking for it. `total_score_raw` is the sum of the raw per-question
        sums (ranking only); `total_score`/`average_score` are the sum and mean
        of the per-question averages (what users see).
        """
        info = registry.find(student_id)
        interviewer_count = len(sheets)

        raw_sums = np.zeros(QUESTIONS_COUNT, dtype=float)
        counts = np.zeros(QUESTIONS_COUNT, dtype=int)

        for sheet in sheets:
            for question_number in range(1, QUESTIONS_COUNT + 1):
                marking = sheet.marking(question_number)
                if marking is not None:
                    raw_sums[question_number - 1] += scoring_rule.score(question_number, marking)
                    counts[question_number - 1] += 1

        question_scores = [
            float(raw_sums[i] / counts[i]) if counts[i] > 0 else None
            for i in range(QUESTIONS_COUNT)
        ]
        present_scores = [s for s in question_scores if s is not None]

        grade = StudentGrade(
            student_id=student_id,
            question_scores=question_scores,
            # Always present (0.0 when nothing was marked) so the student is still ranked
            total_score_raw=float(raw_sums.sum()),
            total_score=float(sum(present_scores)) if present_scores else None,
            average_score=float(sum(present_scores) / len(present_scores)) if present_scores else None,
            interviewer_count=interviewer_count,
            # Duplicate flags were set on the sheets by DuplicateDetector
            is_duplicate=any(s.is_duplicate for s in sheets),
            duplicate_count=sum(1 for s in sheets if s.is_duplicate),
            is_simple_error=(any(s.is_simple_error for s in sheets)
                             or interviewer_count <= SIMPLE_ERROR_MAX_INTERVIEWERS),
        )

        if info is not None:
            grade.student_name = info.name
            grade.registration_number = info.registration_number
            grade.exam_type = info.exam_type
            grade.school = info.school
            grade.birth_date = info.birth_date

        return grade

    # --- RANKING ---

    @staticmethod
    def rank(grades: List[StudentGrade]) -> None:
        """
        Competition ranking within each exam type, by total_score_raw
        (total_score breaks the sort order, not the rank). Equal raw totals
        share a rank and the next rank skips ahead: 10, 10, 8 -> 1, 1, 3.
        Grades without an exam type (or a hand-built grade without a raw
        total) get no rank.
        """
        partitions: Dict[str, List[StudentGrade]] = {}
        for grade in grades:
            if grade.exam_type and grade.total_score_raw is not None:
                partitions.setdefault(grade.exam_type, []).append(grade)
            else:
                grade.rank = None

        for members in partitions.values():
            ordered = sorted(
                members,
                key=lambda g: (g.total_score_raw, g.total_score or 0.0),
                reverse=True,
            )

            current_rank = 1
            for _, tied in groupby(ordered, key=lambda g: g.total_score_raw):
                tied = list(tied)
                for grade in tied:
                    grade.rank = current_rank
                current_rank += len(tied)

    # --- SUMMARY ---

    @staticmethod
    def _display_order(grades: List[StudentGrade]) -> List[StudentGrade]:
        """Duplicates first, then simple errors, then exam type, rank, registration number."""
        return sorted(
            grades,
            key=lambda g: (
                not g.is_duplicate,
                not g.is_simple_error,
                g.exam_type or "",
                g.rank if g.rank is not None else float("inf"),
                g.registration_number or "",
            ),
        )

    @staticmethod
    def _id_list_text(ids: List[str]) -> Optional[str]:
        if not ids:
            return None
        return f"student ids: {OMRUtils.truncate_id_list(ids, SUMMARY_LIST_LIMIT)}"

    @classmethod
    def build_summary(cls,
                      grades: List[StudentGrade],
                      registry: StudentRegistry,
                      sheets: List[SheetResult]) -> RoundSummary:
        """
        Reconcile grades with the registry, rank them and summarize the round.
        Mutates `grades`: registry mismatches are flagged and ranks assigned.
        """
        registry_ids = [sid for sid in registry.student_ids() if not OMRUtils.is_blank(sid)]
        registry_set = set(registry_ids)
        graded_ids = OMRUtils.distinct(g.student_id for g in grades if g.student_id)
        graded_set = set(graded_ids)

        missing_in_grading = [sid for sid in registry_ids if sid not in graded_set]
        missing_in_registry = [sid for sid in graded_ids if sid not in registry_set]

        for grade in grades:
            if grade.student_id and grade.student_id not in registry_set:
                grade.is_simple_error = True
                grade.add_error_detail(cls.NOT_IN_REGISTRY)

        messages = []
        if missing_in_grading:
            messages.append(f"In registry but not graded: {len(missing_in_grading)}")
        if missing_in_registry:
            messages.append(f"Graded but not in registry: {len(missing_in_registry)}")

        cls.rank(grades)
        ordered = cls._display_order(grades)

        error_ids = OMRUtils.distinct(g.student_id for g in ordered if g.has_errors and g.student_id)
        duplicate_ids = OMRUtils.distinct(g.student_id for g in ordered if g.is_duplicate and g.student_id)

        null_combined_ids = OMRUtils.distinct(
            s.student_id for s in sheets if s.combined_id is None and not OMRUtils.is_blank(s.student_id)
        )
        null_set = set(null_combined_ids)
        null_ordered = [g.student_id for g in ordered if g.student_id in null_set]
        null_ordered += sorted(null_set - set(null_ordered))

        return RoundSummary(
            total_sheet_count=len(sheets),
            error_sheet_count=sum(1 for s in sheets if s.has_errors),
            duplicate_combined_id_count=sum(1 for s in sheets if s.is_duplicate),
            null_combined_id_count=sum(1 for s in sheets if s.combined_id is None),
            error_sheet_list=cls._id_list_text(error_ids),
            duplicate_combined_id_list=cls._id_list_text(duplicate_ids),
            null_combined_id_list=cls._id_list_text(null_ordered),
            has_mismatch=bool(messages),
            missing_in_grading=tuple(missing_in_grading),
            missing_in_registry=tuple(missing_in_registry),
            mismatch_message="\n".join(messages) if messages else None,
            missing_in_grading_list=cls._id_list_text(missing_in_grading),
            missing_in_registry_list=cls._id_list_text(missing_in_registry),
        )

    # --- PUBLIC API ---

    def all_grades(self) -> GradingSnapshot:
        """
        Grades of every student in the current round plus the summary.
        Computed once per epoch; grades, index and summary are cached together.
        """
        with self._gate:
            key = self._sync_round_locked()
            if self._snapshot.is_loaded:
                app_logger.debug("Cache HIT: grading_snapshot")
                return self._snapshot.value

            app_logger.debug("Cache MISS: grading_snapshot")
            sheets = self.cache.all_sheet_results(round_key=key)
            registry = self.cache.student_registry(round_key=key)
            scoring_rule = self.cache.scoring_rule(round_key=key)

            grouped: Dict[str, List[SheetResult]] = {}
            for sheet in sheets:
                if not OMRUtils.is_blank(sheet.student_id):
                    grouped.setdefault(sheet.student_id, []).append(sheet)

            grades = [
                self.compute_for_student(student_id, student_sheets, registry, scoring_rule)
                for student_id, student_sheets in grouped.items()
            ]
            summary = self.build_summary(grades, registry, sheets)

            snapshot = GradingSnapshot.build(grades, summary)
            self._snapshot.set(snapshot)
            self._by_student_id.set(dict(snapshot.by_student_id))

            app_logger.info(f"Graded {len(grades)} students from {summary.total_sheet_count} sheets "
                            f"(round '{key}', mismatch: {summary.has_mismatch}).")
            return snapshot

    def summary(self) -> RoundSummary:
        return self.all_grades().summary

    def _grade_for_locked(self, key: str, student_id: str) -> Optional[StudentGrade]:
        if self._by_student_id.is_loaded and student_id in self._by_student_id.value:
            return self._by_student_id.value[student_id]

        # Full round computed and this student is not in it
        if self._snapshot.is_loaded:
            return None

        sheets = self.cache.sheet_results_for_student(student_id, round_key=key)
        if not sheets:
            return None

        registry = self.cache.student_registry(round_key=key)
        scoring_rule = self.cache.scoring_rule(round_key=key)
        grade = self.compute_for_student(student_id, sheets, registry, scoring_rule)

        if not self._by_student_id.is_loaded:
            self._by_student_id.set({})
        self._by_student_id.value[student_id] = grade
        return grade

    def grade_for(self, student_id: Optional[str]) -> Optional[StudentGrade]:
        """
        Grade of one student. Served from the round-wide cache when it exists,
        otherwise computed from that student's sheets only.
        """
        if OMRUtils.is_blank(student_id):
            return None

        with self._gate:
            key = self._sync_round_locked()
            return self._grade_for_locked(key, student_id.strip())

    def grades_for(self, student_ids: Iterable[Optional[str]]) -> Dict[str, StudentGrade]:
        """Grades of several students; ids without sheets are left out."""
        ids = OMRUtils.distinct(sid.strip() for sid in student_ids if not OMRUtils.is_blank(sid))
        if not ids:
            return {}

        with self._gate:
            key = self._sync_round_locked()
            grades = {sid: self._grade_for_locked(key, sid) for sid in ids}

        return {sid: grade for sid, grade in grades.items() if grade is not None}

    def random_sample_student_ids(self, count: int, seed: int) -> List[str]:
        """
        Seeded sample of student ids from the barcode-only identity index.
        Ids are sorted before shuffling, so the same data and seed always
        give the same sample.
        """
        if count <= 0:
            return []

        index = self.cache.student_id_by_image_id()
        all_ids = sorted({sid for sid in index.values() if not OMRUtils.is_blank(sid)})
        if not all_ids:
            return []

        rng = np.random.default_rng(seed)
        order = rng.permutation(len(all_ids))[:min(count, len(all_ids))]
        return [all_ids[i] for i in order]

    @staticmethod
    def format_grade_row(grade: StudentGrade) -> Dict[str, Any]:
        """Build the export row of one student."""
        row: Dict[str, Any] = {
            "Student ID": grade.student_id,
            "Name": grade.student_name or "",
            "Registration No": grade.registration_number or "",
            "Exam Type": grade.exam_type or "",
            "School": grade.school or "",
            "Birth Date": grade.birth_date or "",
            "Session": grade.session_label or "",
            "Room": grade.room_number or "",
            "Order": grade.order_number or "",
        }
        for question_number in range(1, QUESTIONS_COUNT + 1):
            row[f"Q{question_number}"] = grade.question_score(question_number)
        row.update({
            "Total": grade.total_score,
            "Average": grade.average_score,
            "Rank": grade.rank,
            "Interviewers": grade.interviewer_count,
            "Duplicate": grade.duplicate_count if grade.is_duplicate else 0,
            "Error": grade.has_errors,
            "Details": grade.error_details or "",
        })
        return row
