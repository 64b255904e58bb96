from typing import Any, Dict, List, Optional
from omr_grading.core.constants import (
    BARCODE_AREAS_COUNT,
    BARCODE_SEMANTICS,
    INTERVIEW_ID_SEMANTIC,
    OPTIONS_PER_QUESTION,
    QUESTIONS_COUNT,
    STUDENT_ID_SEMANTIC,
)
from omr_grading.core.models import BarcodeResult, ImageDocument, MarkingResult, Session, SheetResult
from omr_grading.utils import app_logger, OMRUtils


class BarcodeSemantics:
    """
    Maps barcode slots to SheetResult fields.
    Subclass and override `semantic_for` to read a different sheet layout.
    """

    def semantic_for(self, barcode_index: int) -> Optional[str]:
        raise NotImplementedError

    def apply(self, result: SheetResult, barcode: BarcodeResult, barcode_index: int) -> None:
        """
        Copy one decoded barcode into the sheet result.

        A successful decode with blank text is recorded as an error here.
        Failed decodes are recorded separately by `record_failure`.
        """
        semantic = self._checked_semantic(barcode_index)
        value = barcode.decoded_text if barcode.success else None

        if semantic in (STUDENT_ID_SEMANTIC, INTERVIEW_ID_SEMANTIC):
            if barcode.success and OMRUtils.is_blank(value):
                value = None
                result.add_error(f"{semantic} barcode empty")
            elif value is not None:
                value = value.strip()

            if semantic == STUDENT_ID_SEMANTIC:
                result.student_id = value
            else:
                result.interview_id = value

    def record_failure(self, result: SheetResult, barcode: BarcodeResult, barcode_index: int) -> None:
        """Append the decode-failed error of one barcode slot, if it failed."""
        semantic = self._checked_semantic(barcode_index)
        if not barcode.success:
            name = semantic or f"barcode {barcode_index + 1}"
            result.add_error(f"{name} barcode decode failed")

    def _checked_semantic(self, barcode_index: int) -> Optional[str]:
        if barcode_index < 0:
            raise ValueError(f"barcode_index must be >= 0, got {barcode_index}")
        return self.semantic_for(barcode_index)


class DefaultBarcodeSemantics(BarcodeSemantics):
    """Slot 0: student id, slot 1: interview id."""

    def semantic_for(self, barcode_index: int) -> Optional[str]:
        if 0 <= barcode_index < len(BARCODE_SEMANTICS):
            return BARCODE_SEMANTICS[barcode_index]
        return None


class SheetAnalyzer:
    """
    Turns the raw detections of one scanned sheet into a SheetResult:
    1. Barcodes -> student id / interview id (through BarcodeSemantics).
    2. Option marks -> one chosen option per question.
    3. Every problem found -> additive error text on the sheet.

    Pure: no caching, safe to call again whenever the inputs change.
    """

    def __init__(self, barcode_semantics: Optional[BarcodeSemantics] = None):
        self.barcode_semantics = barcode_semantics or DefaultBarcodeSemantics()
        app_logger.debug(f"SheetAnalyzer initialized ({type(self.barcode_semantics).__name__}).")

    def read_identity(self, document: ImageDocument, barcodes: Optional[List[BarcodeResult]]) -> SheetResult:
        """
        Apply barcode values only (no marking analysis, no decode-failed errors).
        Used for fast identity lookups that must not pay for full analysis.
        """
        result = SheetResult(image_id=document.image_id, image_file_name=document.file_name)

        if barcodes:
            for index, barcode in enumerate(barcodes[:BARCODE_AREAS_COUNT]):
                self.barcode_semantics.apply(result, barcode, index)

        return result

    def _analyze_markings(self, result: SheetResult, markings: List[MarkingResult],
                          questions_count: int, options_per_question: int) -> None:
        expected = questions_count * options_per_question

        if len(markings) < expected:
            result.add_error(f"insufficient marking count: expected {expected} got {len(markings)}")
            return

        for question_number in range(1, questions_count + 1):
            question_markings = sorted(
                (m for m in markings if m.question_number == question_number),
                key=lambda m: m.option_number,
            )

            if not question_markings:
                result.add_error(f"Q{question_number}: no marking result")
                continue

            marked_options = [m.option_number for m in question_markings if m.is_marked]

            if not marked_options:
                result.set_marking(question_number, None)
                result.add_error(f"Q{question_number}: unmarked")
            elif len(marked_options) > 1:
                result.set_marking(question_number, None)
                options_text = ", ".join(str(o) for o in marked_options)
                result.add_error(f"Q{question_number}: multiple marks ({options_text})")
            else:
                result.set_marking(question_number, marked_options[0])

    def analyze_sheet(self,
                      document: ImageDocument,
                      markings: Optional[List[MarkingResult]] = None,
                      barcodes: Optional[List[BarcodeResult]] = None,
                      questions_count: int = QUESTIONS_COUNT,
                      options_per_question: int = OPTIONS_PER_QUESTION) -> SheetResult:
        """
        Combine one image's marking and barcode results.

        Args:
            document: Scanned image (id and source path).
            markings: Option decisions, None if marking was not run yet.
            barcodes: Barcode decodes in slot order, None if not run yet.
            questions_count, options_per_question: Sheet layout.

        Returns:
            SheetResult: Never raises for bad detections; problems are in
            `has_errors` / `error_message`.
        """
        result = self.read_identity(document, barcodes)

        # None means "not analyzed yet", which is not an error by itself
        if markings is not None:
            self._analyze_markings(result, markings, questions_count, options_per_question)

        # Decode failures are reported after the marking errors
        if barcodes:
            for index, barcode in enumerate(barcodes[:BARCODE_AREAS_COUNT]):
                self.barcode_semantics.record_failure(result, barcode, index)

        if result.combined_id is None:
            result.add_error("missing combined id (student id or interview id absent)")

        return result

    def analyze_all_sheets(self,
                           session: Session,
                           questions_count: int = QUESTIONS_COUNT,
                           options_per_question: int = OPTIONS_PER_QUESTION) -> List[SheetResult]:
        """Analyze every document of the session, in document order."""
        results = [
            self.analyze_sheet(
                document,
                session.marking_results.get(document.image_id),
                session.barcode_results.get(document.image_id),
                questions_count,
                options_per_question,
            )
            for document in session.documents
        ]

        error_count = sum(1 for r in results if r.has_errors)
        app_logger.info(f"Analyzed {len(results)} sheets ({error_count} with errors).")
        return results

    @staticmethod
    def format_sheet_row(result: SheetResult) -> Dict[str, Any]:
        """Build the export row of one sheet."""
        row: Dict[str, Any] = {
            "Image": result.image_file_name,
            "Student ID": result.student_id or "",
            "Interview ID": result.interview_id or "",
            "Combined ID": result.combined_id or "",
        }
        for question_number in range(1, len(result.markings) + 1):
            row[f"Q{question_number}"] = result.marking(question_number)
        row["Duplicate"] = result.is_duplicate
        row["Errors"] = result.error_message or ""
        return row
