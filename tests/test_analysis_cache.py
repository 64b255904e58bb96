import pytest

from omr_grading.core import AnalysisCache, SheetAnalyzer, SlotState
from tests.conftest import build_session


class CountingAnalyzer(SheetAnalyzer):
    """SheetAnalyzer that counts full-round and per-sheet analysis calls."""

    def __init__(self):
        super().__init__()
        self.full_runs = 0
        self.sheet_runs = 0

    def analyze_all_sheets(self, session, *args, **kwargs):
        self.full_runs += 1
        return super().analyze_all_sheets(session, *args, **kwargs)

    def analyze_sheet(self, *args, **kwargs):
        self.sheet_runs += 1
        return super().analyze_sheet(*args, **kwargs)


@pytest.fixture
def counting_cache(context, stores):
    session_store, rule_store, registry_store = stores
    return AnalysisCache(context, session_store, rule_store, registry_store, analyzer=CountingAnalyzer())


@pytest.fixture
def two_rounds(sessions):
    sessions["A"] = build_session([
        ("a-1", "1001", "7", [1, 2, 3, 4]),
        ("a-2", "1001", "8", [2, 2, 2, 2]),
        ("a-3", "1002", "7", [5, 5, 5, 5]),
    ])
    sessions["B"] = build_session([
        ("b-1", "2001", "7", [1, 1, 1, 1]),
    ])
    return sessions


class TestMemoization:
    """Tests for once-per-epoch loading and analysis"""

    def test_session_when_read_twice_then_store_loaded_once(self, cache, stores, two_rounds):
        session_store = stores[0]

        first = cache.session()
        second = cache.session()

        assert first is second
        assert session_store.loads == ["A"]

    def test_all_sheet_results_when_read_twice_then_analyzed_once(self, counting_cache, two_rounds):
        # Act
        first = counting_cache.all_sheet_results()
        second = counting_cache.all_sheet_results()

        # Assert
        assert counting_cache.analyzer.full_runs == 1
        assert [r.image_id for r in first] == [r.image_id for r in second]
        assert first is not second  # callers get their own list

    def test_all_sheet_results_when_duplicates_then_flagged_exactly_once(self, cache, sessions):
        sessions["A"] = build_session([
            ("a-1", "1001", "7", [1, 2, 3, 4]),
            ("a-2", "1001", "7", [1, 2, 3, 4]),
        ])

        cache.all_sheet_results()
        results = cache.all_sheet_results()

        assert [r.error_message for r in results] == ["duplicate combined id (2)"] * 2

    def test_store_failure_when_loading_then_not_cached_and_retried(self, cache, stores, two_rounds):
        # Arrange
        session_store = stores[0]
        session_store.failures.append(ValueError("Malformed session.json"))

        # Act / Assert
        with pytest.raises(ValueError):
            cache.session()
        assert cache.state_of("session") is SlotState.EMPTY

        session = cache.session()
        assert [d.image_id for d in session.documents] == ["a-1", "a-2", "a-3"]
        assert session_store.loads == ["A", "A"]

    def test_invalidate_when_called_then_next_read_reloads(self, cache, stores, two_rounds):
        cache.session()

        cache.invalidate()
        cache.session()

        assert stores[0].loads == ["A", "A"]


class TestRoundIsolation:
    """Tests for round switches never leaking data across rounds"""

    def test_round_switch_when_a_b_a_then_each_round_sees_own_data(self, cache, context, two_rounds):
        # Act
        ids_a = [r.image_id for r in cache.all_sheet_results()]
        context.switch_round("B")
        ids_b = [r.image_id for r in cache.all_sheet_results()]
        context.switch_round("A")
        ids_a_again = [r.image_id for r in cache.all_sheet_results()]

        # Assert
        assert ids_a == ["a-1", "a-2", "a-3"]
        assert ids_b == ["b-1"]
        assert ids_a_again == ids_a

    def test_round_switch_when_switched_then_all_slots_cleared(self, cache, context, two_rounds):
        cache.all_sheet_results()
        cache.student_registry()

        context.switch_round("B")
        cache.session()

        assert cache.round_key == "B"
        assert cache.state_of("all_sheet_results") is SlotState.EMPTY
        assert cache.state_of("student_registry") is SlotState.EMPTY

    def test_explicit_round_key_when_differs_from_context_then_used(self, cache, two_rounds):
        session = cache.session(round_key="B")

        assert [d.image_id for d in session.documents] == ["b-1"]
        assert cache.round_key == "B"


class TestStudentLookups:
    """Tests for identity index and per-student sheets"""

    def test_student_id_by_image_id_when_built_then_no_marking_analysis(self, counting_cache, two_rounds):
        index = counting_cache.student_id_by_image_id()

        assert index == {"a-1": "1001", "a-2": "1001", "a-3": "1002"}
        assert counting_cache.analyzer.full_runs == 0
        assert counting_cache.analyzer.sheet_runs == 0

    def test_sheet_results_for_student_when_cold_then_subset_only(self, counting_cache, two_rounds):
        # Act
        sheets = counting_cache.sheet_results_for_student("1001")

        # Assert
        assert [s.image_id for s in sheets] == ["a-1", "a-2"]
        assert counting_cache.analyzer.full_runs == 0
        assert counting_cache.analyzer.sheet_runs == 2
        assert counting_cache.state_of("all_sheet_results") is SlotState.EMPTY

    def test_sheet_results_for_student_when_warm_then_served_from_cache(self, counting_cache, two_rounds):
        counting_cache.sheet_results_for_student("1001")

        sheets = counting_cache.sheet_results_for_student(" 1001 ")

        assert len(sheets) == 2
        assert counting_cache.analyzer.sheet_runs == 2

    def test_sheet_results_for_student_when_full_analysis_ran_then_same_objects(self, cache, two_rounds):
        all_results = cache.all_sheet_results()

        sheets = cache.sheet_results_for_student("1002")

        assert sheets == [all_results[2]]
        assert sheets[0] is all_results[2]

    @pytest.mark.parametrize("student_id", [None, "", "   "])
    def test_sheet_results_for_student_when_blank_id_then_empty(self, cache, two_rounds, student_id):
        assert cache.sheet_results_for_student(student_id) == []

    def test_sheet_results_for_student_when_unknown_id_then_empty(self, cache, two_rounds):
        assert cache.sheet_results_for_student("9999") == []
        cache.all_sheet_results()
        assert cache.sheet_results_for_student("9999") == []
