import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from omr_grading.core import AnalysisCache, GradingAggregator, RoundContext
from omr_grading.core.constants import OPTIONS_PER_QUESTION, QUESTIONS_COUNT
from omr_grading.core.models import (
    BarcodeResult,
    ImageDocument,
    MarkingResult,
    QuestionScoringRule,
    ScoringRule,
    Session,
    StudentInfo,
    StudentRegistry,
)
from omr_grading.storage import RegistryStore, RoundPaths, ScoringRuleStore, SessionStore

# Per question: an option number, None (unmarked) or a tuple (multi-marked)
Choice = Union[int, None, Tuple[int, ...]]


def make_markings(choices: Sequence[Choice]) -> List[MarkingResult]:
    """Full grid of marking results for one sheet."""
    markings = []
    for q, choice in enumerate(choices, start=1):
        marked = set(choice) if isinstance(choice, tuple) else {choice}
        for option in range(1, OPTIONS_PER_QUESTION + 1):
            markings.append(MarkingResult(
                scoring_area_id=f"{q}-{option}",
                question_number=q,
                option_number=option,
                is_marked=option in marked,
            ))
    return markings


def make_barcodes(student_id: Optional[str], interview_id: Optional[str]) -> List[BarcodeResult]:
    """Barcode slots 0 and 1; None means a failed decode."""
    return [
        BarcodeResult("student", success=student_id is not None, decoded_text=student_id),
        BarcodeResult("interview", success=interview_id is not None, decoded_text=interview_id),
    ]


def build_session(sheets: Sequence[Tuple[str, Optional[str], Optional[str], Sequence[Choice]]]) -> Session:
    """sheets: (image_id, student_id, interview_id, choices) per scanned image."""
    session = Session()
    for image_id, student_id, interview_id, choices in sheets:
        session.documents.append(ImageDocument(image_id=image_id, source_path=f"C:\\scans\\{image_id}.jpg"))
        session.marking_results[image_id] = make_markings(choices)
        session.barcode_results[image_id] = make_barcodes(student_id, interview_id)
    return session


def option_value_rule() -> ScoringRule:
    """Option n is worth n points on every question."""
    return ScoringRule(questions=[
        QuestionScoringRule(q, [float(o) for o in range(1, OPTIONS_PER_QUESTION + 1)])
        for q in range(1, QUESTIONS_COUNT + 1)
    ])


class FakeStore:
    """In-memory store keyed by round name; counts loads and can fail on demand."""

    def __init__(self, data: Dict[str, object], default_factory):
        self.data = data
        self.default_factory = default_factory
        self.loads: List[str] = []
        self.failures: List[Exception] = []

    def load(self, round_name: str):
        self.loads.append(round_name)
        if self.failures:
            raise self.failures.pop(0)
        return self.data.get(round_name) or self.default_factory()


@pytest.fixture
def sessions():
    """Round name -> Session, filled in by each test."""
    return {}


@pytest.fixture
def registries():
    return {}


@pytest.fixture
def context():
    return RoundContext("A")


@pytest.fixture
def stores(sessions, registries):
    return (
        FakeStore(sessions, Session),
        FakeStore({}, option_value_rule),
        FakeStore(registries, StudentRegistry),
    )


@pytest.fixture
def cache(context, stores):
    session_store, rule_store, registry_store = stores
    return AnalysisCache(context, session_store, rule_store, registry_store)


@pytest.fixture
def aggregator(cache):
    return GradingAggregator(cache)


@pytest.fixture
def registry_of():
    def _build(*entries: Tuple[str, str]) -> StudentRegistry:
        """entries: (student_id, exam_type)"""
        return StudentRegistry([
            StudentInfo(student_id=sid, exam_type=exam, name=f"Student {sid}", registration_number=f"R{sid}")
            for sid, exam in entries
        ])
    return _build


# --- ON-DISK ROUNDS ---

@pytest.fixture
def round_paths(tmp_path: Path) -> RoundPaths:
    return RoundPaths(tmp_path / "Rounds")


@pytest.fixture
def disk_stores(round_paths):
    return SessionStore(round_paths), ScoringRuleStore(round_paths), RegistryStore(round_paths)


def write_session_json(paths: RoundPaths, round_name: str, sheets) -> Path:
    session = build_session(sheets)
    data = {
        "Documents": [
            {"ImageId": d.image_id, "SourcePath": d.source_path, "ImageWidth": 1000, "ImageHeight": 1400}
            for d in session.documents
        ],
        "MarkingResults": {
            image_id: [
                {"ScoringAreaId": m.scoring_area_id, "QuestionNumber": m.question_number,
                 "OptionNumber": m.option_number, "IsMarked": m.is_marked}
                for m in markings
            ]
            for image_id, markings in session.marking_results.items()
        },
        "BarcodeResults": {
            image_id: [
                {"BarcodeAreaId": b.barcode_area_id, "Success": b.success, "DecodedText": b.decoded_text}
                for b in barcodes
            ]
            for image_id, barcodes in session.barcode_results.items()
        },
    }
    file_path = paths.session_file(round_name)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(json.dumps(data), encoding="utf-8")
    return file_path
