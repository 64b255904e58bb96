"""
Round-scoped memoization of session loads and sheet analysis.

Several screens (grading, verification, sampling, export) need the same
session, registry and sheet results. AnalysisCache loads and analyzes them
once per round epoch and hands out the shared results.

State machine: each slot is EMPTY or LOADED. Every public call first compares
its round key with the key the slots belong to; on mismatch all slots are
cleared together before anything else happens, so one round's data is never
served under another round's key.
"""

import threading
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Generic, List, Optional, TypeVar
from omr_grading.core.duplicate_detector import DuplicateDetector
from omr_grading.core.models import ImageDocument, ScoringRule, Session, SheetResult, StudentRegistry
from omr_grading.core.round_context import RoundContext
from omr_grading.core.sheet_analyzer import SheetAnalyzer
from omr_grading.utils import app_logger, OMRUtils

if TYPE_CHECKING:
    from omr_grading.storage import RegistryStore, ScoringRuleStore, SessionStore

T = TypeVar("T")


class SlotState(Enum):
    EMPTY = "empty"
    LOADED = "loaded"


class CacheSlot(Generic[T]):
    """One memoized value. A failing loader leaves the slot EMPTY."""

    def __init__(self, name: str):
        self.name = name
        self.state = SlotState.EMPTY
        self._value: Optional[T] = None

    @property
    def is_loaded(self) -> bool:
        return self.state is SlotState.LOADED

    @property
    def value(self) -> T:
        if self.state is not SlotState.LOADED:
            raise LookupError(f"Cache slot '{self.name}' is empty")
        return self._value

    def set(self, value: T) -> T:
        self._value = value
        self.state = SlotState.LOADED
        return value

    def get_or_load(self, loader: Callable[[], T]) -> T:
        if self.state is SlotState.LOADED:
            app_logger.debug(f"Cache HIT: {self.name}")
            return self._value
        app_logger.debug(f"Cache MISS: {self.name}")
        return self.set(loader())

    def clear(self) -> None:
        self._value = None
        self.state = SlotState.EMPTY


class AnalysisCache:
    """
    Shared, round-scoped cache of session data and sheet results.

    One lock serializes every "check / compute if missing / store" sequence.
    Reads dominate and invalidation only happens on round switches, so a
    single coarse gate is enough.
    """

    SLOT_NAMES = (
        "session",
        "scoring_rule",
        "student_registry",
        "document_by_image_id",
        "student_id_by_image_id",
        "all_sheet_results",
        "sheet_results_by_student_id",
    )

    def __init__(self,
                 context: RoundContext,
                 session_store: "SessionStore",
                 scoring_rule_store: "ScoringRuleStore",
                 registry_store: "RegistryStore",
                 analyzer: Optional[SheetAnalyzer] = None):
        self.context = context
        self.session_store = session_store
        self.scoring_rule_store = scoring_rule_store
        self.registry_store = registry_store
        self.analyzer = analyzer or SheetAnalyzer()

        self._gate = threading.Lock()
        self._round_key: Optional[str] = None
        self._slots: Dict[str, CacheSlot] = {name: CacheSlot(name) for name in self.SLOT_NAMES}
        app_logger.debug("AnalysisCache initialized.")

    # --- ROUND / EPOCH HANDLING (call with the gate held) ---

    def _clear_all_locked(self) -> None:
        for slot in self._slots.values():
            slot.clear()

    def _sync_round_locked(self, round_key: Optional[str]) -> str:
        key = self.context.current_round if round_key is None else round_key
        if key != self._round_key:
            if self._round_key is not None:
                app_logger.info(f"AnalysisCache: round changed '{self._round_key}' -> '{key}', cache cleared.")
            self._clear_all_locked()
            self._round_key = key
        return key

    def invalidate(self) -> None:
        """Drop everything and start a new epoch for the current round."""
        with self._gate:
            self._clear_all_locked()
            self._round_key = self.context.current_round
        app_logger.info(f"AnalysisCache invalidated (round '{self._round_key}').")

    def state_of(self, slot_name: str) -> SlotState:
        with self._gate:
            return self._slots[slot_name].state

    @property
    def round_key(self) -> Optional[str]:
        return self._round_key

    # --- LOADERS (call with the gate held) ---

    def _session_locked(self, key: str) -> Session:
        return self._slots["session"].get_or_load(lambda: self.session_store.load(key))

    def _document_index_locked(self, key: str) -> Dict[str, ImageDocument]:
        def build() -> Dict[str, ImageDocument]:
            index: Dict[str, ImageDocument] = {}
            for document in self._session_locked(key).documents:
                if document.image_id and document.image_id not in index:
                    index[document.image_id] = document
            return index

        return self._slots["document_by_image_id"].get_or_load(build)

    def _student_id_index_locked(self, key: str) -> Dict[str, Optional[str]]:
        def build() -> Dict[str, Optional[str]]:
            session = self._session_locked(key)
            index: Dict[str, Optional[str]] = {}
            for document in session.documents:
                identity = self.analyzer.read_identity(document, session.barcode_results.get(document.image_id))
                index[document.image_id] = None if OMRUtils.is_blank(identity.student_id) else identity.student_id
            return index

        return self._slots["student_id_by_image_id"].get_or_load(build)

    def _all_sheet_results_locked(self, key: str) -> List[SheetResult]:
        slot = self._slots["all_sheet_results"]
        if slot.is_loaded:
            app_logger.debug("Cache HIT: all_sheet_results")
            return slot.value

        app_logger.debug("Cache MISS: all_sheet_results")
        session = self._session_locked(key)

        # Fresh analysis, then duplicate flags exactly once on this fresh set
        results = self.analyzer.analyze_all_sheets(session)
        DuplicateDetector.detect_and_apply(results)

        by_student: Dict[str, List[SheetResult]] = {}
        for result in results:
            if not OMRUtils.is_blank(result.student_id):
                by_student.setdefault(result.student_id, []).append(result)

        self._slots["sheet_results_by_student_id"].set(by_student)
        return slot.set(results)

    # --- PUBLIC API ---

    def session(self, round_key: Optional[str] = None) -> Session:
        with self._gate:
            key = self._sync_round_locked(round_key)
            return self._session_locked(key)

    def scoring_rule(self, round_key: Optional[str] = None) -> ScoringRule:
        with self._gate:
            key = self._sync_round_locked(round_key)
            return self._slots["scoring_rule"].get_or_load(lambda: self.scoring_rule_store.load(key))

    def student_registry(self, round_key: Optional[str] = None) -> StudentRegistry:
        with self._gate:
            key = self._sync_round_locked(round_key)
            return self._slots["student_registry"].get_or_load(lambda: self.registry_store.load(key))

    def document_by_image_id(self, round_key: Optional[str] = None) -> Dict[str, ImageDocument]:
        with self._gate:
            key = self._sync_round_locked(round_key)
            return self._document_index_locked(key)

    def student_id_by_image_id(self, round_key: Optional[str] = None) -> Dict[str, Optional[str]]:
        """
        imageId -> studentId built from barcodes only.
        Identity lookups (sampling, single-student queries) never force
        full marking analysis.
        """
        with self._gate:
            key = self._sync_round_locked(round_key)
            return self._student_id_index_locked(key)

    def all_sheet_results(self, round_key: Optional[str] = None) -> List[SheetResult]:
        """Every sheet of the round, analyzed and duplicate-flagged once per epoch."""
        with self._gate:
            key = self._sync_round_locked(round_key)
            return list(self._all_sheet_results_locked(key))

    def sheet_results_for_student(self, student_id: Optional[str], round_key: Optional[str] = None) -> List[SheetResult]:
        """
        Sheets of one student.

        Fast path: a copy of the cached slice. Slow path: analyze only this
        student's images (found through the barcode-only index), flag
        duplicates within that subset and memoize it per student, without
        running the full-round analysis.
        """
        if OMRUtils.is_blank(student_id):
            return []
        sid = student_id.strip()

        with self._gate:
            key = self._sync_round_locked(round_key)

            by_student_slot = self._slots["sheet_results_by_student_id"]
            if by_student_slot.is_loaded and sid in by_student_slot.value:
                app_logger.debug(f"Cache HIT: sheets of student {sid}")
                return list(by_student_slot.value[sid])

            if self._slots["all_sheet_results"].is_loaded:
                # Full analysis ran and this student has no sheet
                return []

            app_logger.debug(f"Cache MISS: sheets of student {sid} (subset analysis)")
            session = self._session_locked(key)
            documents = self._document_index_locked(key)
            identity_index = self._student_id_index_locked(key)

            image_ids = [image_id for image_id, owner in identity_index.items() if owner == sid]
            if not image_ids:
                return []

            subset = [
                self.analyzer.analyze_sheet(
                    documents.get(image_id) or ImageDocument(image_id=image_id),
                    session.marking_results.get(image_id),
                    session.barcode_results.get(image_id),
                )
                for image_id in image_ids
            ]
            DuplicateDetector.detect_and_apply(subset)

            if not by_student_slot.is_loaded:
                by_student_slot.set({})
            by_student_slot.value[sid] = subset
            return list(subset)
