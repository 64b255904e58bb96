"""
Per-round loaders for session, scoring rule and student registry.

Each round lives in its own folder under the rounds folder:

    <rounds_folder>/<safe round name>/session.json
                                     /scoring_rule.json
                                     /student_registry.json

A missing file means "nothing saved yet" and yields an empty object. A file
that exists but cannot be parsed raises: the caches must not cache a
synthesized default in place of real data.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
from omr_grading.core.constants import OPTIONS_PER_QUESTION
from omr_grading.core.models import (
    AlignmentInfo,
    BarcodeResult,
    ImageDocument,
    MarkingResult,
    QuestionScoringRule,
    ScoringRule,
    Session,
    StudentInfo,
    StudentRegistry,
)
from omr_grading.utils import app_logger, FileHandler, OMRUtils


class RoundPaths:
    """Resolves the on-disk folder and files of each round."""

    SESSION_FILE = "session.json"
    SCORING_RULE_FILE = "scoring_rule.json"
    STUDENT_REGISTRY_FILE = "student_registry.json"

    def __init__(self, rounds_folder: Path):
        self.rounds_folder = Path(rounds_folder)

    def round_root(self, round_name: str) -> Path:
        return self.rounds_folder / OMRUtils.sanitize_folder_name(round_name)

    def session_file(self, round_name: str) -> Path:
        return self.round_root(round_name) / self.SESSION_FILE

    def scoring_rule_file(self, round_name: str) -> Path:
        return self.round_root(round_name) / self.SCORING_RULE_FILE

    def student_registry_file(self, round_name: str) -> Path:
        return self.round_root(round_name) / self.STUDENT_REGISTRY_FILE


def _load_if_exists(file_path: Path, what: str) -> Optional[Dict[str, Any]]:
    if not file_path.exists():
        app_logger.debug(f"No {what} saved yet ({file_path}); using an empty one.")
        return None
    data = FileHandler.load_json(file_path)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {what} structure in {file_path.name}: expected an object")
    return data


class SessionStore:
    def __init__(self, paths: RoundPaths):
        self.paths = paths

    def load(self, round_name: str) -> Session:
        data = _load_if_exists(self.paths.session_file(round_name), "session")
        if data is None:
            return Session()

        try:
            session = self._parse(data)
        except (KeyError, TypeError, ValueError) as e:
            app_logger.error(f"Malformed session for round '{round_name}': {e}")
            raise ValueError(f"Malformed session.json for round '{round_name}': {e}") from e

        app_logger.info(f"Session loaded: round '{round_name}', {len(session.documents)} documents.")
        return session

    @staticmethod
    def _parse_alignment(element: Optional[Dict[str, Any]]) -> Optional[AlignmentInfo]:
        if not element:
            return None

        info = AlignmentInfo(
            success=bool(element.get("Success", False)),
            confidence=float(element.get("Confidence", 0.0)),
            rotation=float(element.get("Rotation", 0.0)),
            scale_x=float(element.get("ScaleX", 1.0)),
            scale_y=float(element.get("ScaleY", 1.0)),
            translation_x=float(element.get("TranslationX", 0.0)),
            translation_y=float(element.get("TranslationY", 0.0)),
            aligned_image_path=element.get("AlignedImagePath"),
        )

        # Aligned image cache was cleaned up: alignment has to be redone
        if info.aligned_image_path and not Path(info.aligned_image_path).exists():
            app_logger.warning(f"Aligned image cache missing: {info.aligned_image_path}")
            return None
        return info

    def _parse(self, data: Dict[str, Any]) -> Session:
        session = Session()

        for element in data.get("Documents") or []:
            session.documents.append(ImageDocument(
                image_id=element["ImageId"],
                source_path=element.get("SourcePath") or "",
                image_width=int(element.get("ImageWidth", 0)),
                image_height=int(element.get("ImageHeight", 0)),
                alignment_info=self._parse_alignment(element.get("AlignmentInfo")),
            ))

        for image_id, items in (data.get("MarkingResults") or {}).items():
            session.marking_results[image_id] = [
                MarkingResult(
                    scoring_area_id=item.get("ScoringAreaId") or "",
                    question_number=int(item.get("QuestionNumber", 0)),
                    option_number=int(item.get("OptionNumber", 0)),
                    is_marked=bool(item.get("IsMarked", False)),
                    average_brightness=float(item.get("AverageBrightness", 0.0)),
                    threshold=float(item.get("Threshold", 128.0)),
                )
                for item in items
            ]

        for image_id, items in (data.get("BarcodeResults") or {}).items():
            session.barcode_results[image_id] = [
                BarcodeResult(
                    barcode_area_id=item.get("BarcodeAreaId") or "",
                    success=bool(item.get("Success", False)),
                    decoded_text=item.get("DecodedText"),
                    format=item.get("Format"),
                    error_message=item.get("ErrorMessage"),
                )
                for item in items
            ]

        session.alignment_failed_image_ids = set(data.get("AlignmentFailedImageIds") or [])
        return session


class ScoringRuleStore:
    def __init__(self, paths: RoundPaths):
        self.paths = paths

    def load(self, round_name: str) -> ScoringRule:
        data = _load_if_exists(self.paths.scoring_rule_file(round_name), "scoring rule")
        if data is None:
            return ScoringRule()

        rule = ScoringRule()
        try:
            if "ScoreNames" in data:
                names = [name or "" for name in data["ScoreNames"]]
                names += [""] * (OPTIONS_PER_QUESTION - len(names))
                rule.score_names = names

            if "Questions" in data:
                rule.questions = []
                for element in data["Questions"]:
                    scores = [float(s) for s in element.get("Scores") or []]
                    scores += [0.0] * (OPTIONS_PER_QUESTION - len(scores))
                    rule.questions.append(QuestionScoringRule(int(element.get("QuestionNumber", 0)), scores))
        except (TypeError, ValueError) as e:
            app_logger.error(f"Malformed scoring rule for round '{round_name}': {e}")
            raise ValueError(f"Malformed scoring_rule.json for round '{round_name}': {e}") from e

        app_logger.debug(f"Scoring rule loaded: round '{round_name}', {len(rule.questions)} questions.")
        return rule


class RegistryStore:
    # Column order of the registry workbook
    XLSX_COLUMNS = ("student_id", "registration_number", "exam_type", "name", "birth_date", "school")

    def __init__(self, paths: RoundPaths):
        self.paths = paths

    def load(self, round_name: str) -> StudentRegistry:
        data = _load_if_exists(self.paths.student_registry_file(round_name), "student registry")
        if data is None:
            return StudentRegistry()

        try:
            registry = StudentRegistry([
                StudentInfo(
                    student_id=(element.get("StudentId") or "").strip(),
                    registration_number=element.get("RegistrationNumber"),
                    exam_type=element.get("ExamType"),
                    name=element.get("Name"),
                    birth_date=element.get("BirthDate"),
                    school=element.get("MiddleSchool"),
                )
                for element in data.get("Students") or []
            ])
        except AttributeError as e:
            app_logger.error(f"Malformed student registry for round '{round_name}': {e}")
            raise ValueError(f"Malformed student_registry.json for round '{round_name}': {e}") from e

        app_logger.debug(f"Student registry loaded: round '{round_name}', {len(registry.students)} students.")
        return registry

    def save(self, round_name: str, registry: StudentRegistry) -> Path:
        data = {
            "Students": [
                {
                    "StudentId": s.student_id,
                    "RegistrationNumber": s.registration_number,
                    "ExamType": s.exam_type,
                    "Name": s.name,
                    "BirthDate": s.birth_date,
                    "MiddleSchool": s.school,
                }
                for s in registry.students
            ]
        }
        return FileHandler.save_json(data, self.paths.student_registry_file(round_name))

    def load_from_xlsx(self, file_path: Path) -> StudentRegistry:
        """
        Read a registry workbook: header row, then one student per row in
        XLSX_COLUMNS order. Rows with a blank student id are skipped.
        """
        rows = FileHandler.load_excel_rows(file_path)
        if not rows:
            raise ValueError(f"No data rows in {Path(file_path).name} (empty or header only)")

        students: List[StudentInfo] = []
        for row in rows:
            cells = list(row) + [""] * (len(self.XLSX_COLUMNS) - len(row))
            if not cells[0]:
                continue
            values = dict(zip(self.XLSX_COLUMNS, cells))
            students.append(StudentInfo(**values))

        app_logger.info(f"Imported {len(students)} students from {Path(file_path).name}")
        return StudentRegistry(students)

    def import_xlsx(self, round_name: str, file_path: Path) -> StudentRegistry:
        """Import a registry workbook and save it as the round's registry."""
        registry = self.load_from_xlsx(file_path)
        self.save(round_name, registry)
        return registry
