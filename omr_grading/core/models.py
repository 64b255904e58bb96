"""
Data types flowing through the analysis and grading layers.

Raw detections (AlignmentInfo, MarkingResult, BarcodeResult) are produced by
the alignment, marking and barcode readers; Session, ScoringRule and
StudentRegistry are loaded per round from storage. SheetResult and
StudentGrade are derived and recomputed whenever their inputs change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PureWindowsPath
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .constants import (
    OPTIONS_PER_QUESTION,
    QUESTIONS_COUNT,
    SESSION_LABELS,
)
from omr_grading.utils.helpers import OMRUtils


# --- RAW DETECTIONS ---

@dataclass
class AlignmentInfo:
    """Timing-mark alignment outcome for one image."""
    success: bool = False
    confidence: float = 0.0
    rotation: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    translation_x: float = 0.0
    translation_y: float = 0.0
    aligned_image_path: Optional[str] = None


@dataclass
class MarkingResult:
    """Marked/unmarked decision for one option bubble."""
    scoring_area_id: str = ""
    question_number: int = 0
    option_number: int = 0
    is_marked: bool = False
    average_brightness: float = 0.0
    threshold: float = 128.0


@dataclass
class BarcodeResult:
    """Decoded text of one barcode area."""
    barcode_area_id: str = ""
    success: bool = False
    decoded_text: Optional[str] = None
    format: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ImageDocument:
    image_id: str
    source_path: str = ""
    image_width: int = 0
    image_height: int = 0
    alignment_info: Optional[AlignmentInfo] = None

    @property
    def file_name(self) -> str:
        # Sessions are written on Windows; handle both separators
        return PureWindowsPath(self.source_path).name


@dataclass
class Session:
    """Documents of one round plus their per-image detection results."""
    documents: List[ImageDocument] = field(default_factory=list)
    marking_results: Dict[str, List[MarkingResult]] = field(default_factory=dict)
    barcode_results: Dict[str, List[BarcodeResult]] = field(default_factory=dict)
    alignment_failed_image_ids: Set[str] = field(default_factory=set)


# --- ROUND CONFIGURATION ---

@dataclass
class QuestionScoringRule:
    question_number: int
    scores: List[float] = field(default_factory=lambda: [0.0] * OPTIONS_PER_QUESTION)

    def score(self, option_number: int) -> float:
        if option_number < 1 or option_number > OPTIONS_PER_QUESTION:
            return 0.0
        index = option_number - 1
        return self.scores[index] if index < len(self.scores) else 0.0


@dataclass
class ScoringRule:
    """Points awarded for each (question, option) pair."""
    questions: List[QuestionScoringRule] = field(
        default_factory=lambda: [QuestionScoringRule(q) for q in range(1, QUESTIONS_COUNT + 1)]
    )
    score_names: List[str] = field(default_factory=lambda: [""] * OPTIONS_PER_QUESTION)

    def score(self, question_number: int, option_number: int) -> float:
        """Score of one marking; 0 for unknown questions or out-of-range options."""
        for question in self.questions:
            if question.question_number == question_number:
                return question.score(option_number)
        return 0.0


@dataclass
class StudentInfo:
    student_id: str
    registration_number: Optional[str] = None
    exam_type: Optional[str] = None
    name: Optional[str] = None
    birth_date: Optional[str] = None
    school: Optional[str] = None


@dataclass
class StudentRegistry:
    students: List[StudentInfo] = field(default_factory=list)

    def find(self, student_id: str) -> Optional[StudentInfo]:
        for student in self.students:
            if student.student_id == student_id:
                return student
        return None

    def student_ids(self) -> List[str]:
        """Registry ids in file order, without duplicates."""
        return OMRUtils.distinct(s.student_id for s in self.students)


# --- DERIVED RESULTS ---

@dataclass
class SheetResult:
    """
    Analysis outcome of one scanned sheet.

    `markings[q - 1]` holds the single marked option of question q, or None
    when the question is unmarked or multi-marked. `error_message` is
    additive ("; "-joined) and display-ready.
    """
    image_id: str
    image_file_name: str = ""
    student_id: Optional[str] = None
    interview_id: Optional[str] = None
    markings: List[Optional[int]] = field(default_factory=lambda: [None] * QUESTIONS_COUNT)
    has_errors: bool = False
    error_message: Optional[str] = None
    is_duplicate: bool = False

    @property
    def combined_id(self) -> Optional[str]:
        if not self.student_id or not self.interview_id:
            return None
        return f"{self.student_id}_{self.interview_id}"

    @property
    def is_simple_error(self) -> bool:
        """Barcode/marking problem, not counting the duplicate flag."""
        return self.has_errors

    def marking(self, question_number: int) -> Optional[int]:
        return self.markings[question_number - 1]

    def set_marking(self, question_number: int, option_number: Optional[int]) -> None:
        self.markings[question_number - 1] = option_number

    def add_error(self, message: str) -> None:
        self.has_errors = True
        self.error_message = OMRUtils.append_message(self.error_message, message)


@dataclass
class StudentGrade:
    """
    Aggregated grade of one student across every interviewer's sheet.

    `total_score_raw` sums the raw per-question sums and is used only for
    ranking; `total_score`/`average_score` are built from the per-question
    averages and are what users see.
    """
    student_id: str
    question_scores: List[Optional[float]] = field(default_factory=lambda: [None] * QUESTIONS_COUNT)
    total_score_raw: Optional[float] = None
    total_score: Optional[float] = None
    average_score: Optional[float] = None
    rank: Optional[int] = None
    interviewer_count: int = 0
    is_duplicate: bool = False
    duplicate_count: int = 0
    is_simple_error: bool = False
    error_details: Optional[str] = None
    student_name: Optional[str] = None
    registration_number: Optional[str] = None
    exam_type: Optional[str] = None
    school: Optional[str] = None
    birth_date: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return self.is_simple_error or self.is_duplicate

    def question_score(self, question_number: int) -> Optional[float]:
        return self.question_scores[question_number - 1]

    def add_error_detail(self, detail: str) -> None:
        self.error_details = OMRUtils.append_message(self.error_details, detail, separator=", ")

    # Student ids are laid out as SSRROO (session, room, order)
    @property
    def session_label(self) -> Optional[str]:
        if len(self.student_id) < 2:
            return None
        return SESSION_LABELS.get(self.student_id[:2])

    @property
    def room_number(self) -> Optional[str]:
        if len(self.student_id) < 4:
            return None
        room = self.student_id[2:4]
        if room.isdigit() and 1 <= int(room) <= 12:
            return room
        return None

    @property
    def order_number(self) -> Optional[str]:
        if len(self.student_id) < 6:
            return None
        return self.student_id[4:6]


@dataclass(frozen=True)
class RoundSummary:
    """Round-wide counts and pre-truncated lists for the grading screens."""
    total_sheet_count: int = 0
    error_sheet_count: int = 0
    duplicate_combined_id_count: int = 0
    null_combined_id_count: int = 0
    error_sheet_list: Optional[str] = None
    duplicate_combined_id_list: Optional[str] = None
    null_combined_id_list: Optional[str] = None
    has_mismatch: bool = False
    missing_in_grading: Tuple[str, ...] = ()
    missing_in_registry: Tuple[str, ...] = ()
    mismatch_message: Optional[str] = None
    missing_in_grading_list: Optional[str] = None
    missing_in_registry_list: Optional[str] = None

    @property
    def missing_in_grading_count(self) -> int:
        return len(self.missing_in_grading)

    @property
    def missing_in_registry_count(self) -> int:
        return len(self.missing_in_registry)


@dataclass(frozen=True)
class GradingSnapshot:
    """Grades, their id index and the summary, cached and dropped together."""
    results: Tuple[StudentGrade, ...]
    by_student_id: Mapping[str, StudentGrade]
    summary: RoundSummary

    @classmethod
    def build(cls, results: List[StudentGrade], summary: RoundSummary) -> "GradingSnapshot":
        index = {grade.student_id: grade for grade in results}
        return cls(tuple(results), MappingProxyType(index), summary)
