import threading
from datetime import datetime, timedelta

import pytest

from core.enums import ChangeType, RepresentationMode
from core.models import Grid, TokenOptimizationOptions
from context import ChangeHistoryStore, MultiModalSpreadsheetContext
from stages import SemanticGridBuilder
from stages.s4_semantic_context import RepresentationBuilder


@pytest.fixture
def financial_grid():
    return Grid.from_rows([
        ["Revenue", "Q1", "Q2"],
        ["Product A", 100, 150],
        ["Total", "=SUM(B2:B2)", "=SUM(C2:C2)"],
    ])


def test_select_representation_modes():
    context = MultiModalSpreadsheetContext()

    assert context.select_representation_modes("Explain the formula layout") == [
        RepresentationMode.SPATIAL,
        RepresentationMode.SEMANTIC,
        RepresentationMode.DETAILED,
        RepresentationMode.COMPACT,
    ]
    assert context.select_representation_modes("") == [RepresentationMode.COMPACT]
    assert context.select_representation_modes(None) == [RepresentationMode.COMPACT]


def test_comprehensive_context_with_tracked_changes(financial_grid):
    context = MultiModalSpreadsheetContext()
    assert context.track_changes(financial_grid) == 9
    context.record_change("B2", 120)

    result = context.build_comprehensive_context(financial_grid, "What changed in the history?")

    assert result.primary_mode == RepresentationMode.SEMANTIC
    assert list(result.modes) == [
        RepresentationMode.SEMANTIC,
        RepresentationMode.SPATIAL,
        RepresentationMode.DIFFERENTIAL,
        RepresentationMode.COMPACT,
    ]
    differential = result.modes[RepresentationMode.DIFFERENTIAL]
    assert "- B2 [value-changed]: 100 -> 120" in differential
    assert result.coverage_score == 1.0
    assert 0.0 < result.fidelity_score <= 1.0
    assert result.total_tokens > 0


def test_differential_without_history(financial_grid):
    result = MultiModalSpreadsheetContext().build_comprehensive_context(financial_grid, "show the diff")

    assert result.modes[RepresentationMode.DIFFERENTIAL] == "No changes tracked"


def test_detailed_mode_raises_fidelity(financial_grid):
    context = MultiModalSpreadsheetContext()
    plain = context.build_comprehensive_context(financial_grid, "Summarize")
    detailed = context.build_comprehensive_context(financial_grid, "Summarize the formula cells")

    assert RepresentationMode.DETAILED in detailed.modes
    assert detailed.fidelity_score > plain.fidelity_score


def test_every_mode_respects_its_budget(financial_grid):
    options = TokenOptimizationOptions(max_tokens=400)
    result = MultiModalSpreadsheetContext().build_comprehensive_context(
        financial_grid, "Explain the formula layout and structure", options
    )

    per_mode = max(400 // len(result.modes), 200)
    for content in result.modes.values():
        assert len(content) <= (per_mode + 4) * 4 + 1


class CountingRepresentations(RepresentationBuilder):
    def __init__(self):
        super().__init__()
        self.built = []

    def build(self, mode, grid, context, max_tokens, history=None):
        self.built.append(mode)
        return super().build(mode, grid, context, max_tokens, history)


def test_matching_budget_reuses_rendered_modes(financial_grid):
    representations = CountingRepresentations()
    context = MultiModalSpreadsheetContext(builder=SemanticGridBuilder(representations=representations))

    result = context.build_comprehensive_context(
        financial_grid, "What is the total revenue?", TokenOptimizationOptions(max_tokens=300)
    )

    assert list(result.modes) == [RepresentationMode.SEMANTIC, RepresentationMode.SPATIAL, RepresentationMode.COMPACT]
    assert representations.built == [RepresentationMode.SEMANTIC, RepresentationMode.SPATIAL, RepresentationMode.COMPACT]


def test_different_budget_renders_again(financial_grid):
    representations = CountingRepresentations()
    context = MultiModalSpreadsheetContext(builder=SemanticGridBuilder(representations=representations))

    context.build_comprehensive_context(financial_grid, "What is the total revenue?")

    assert representations.built == [
        RepresentationMode.SEMANTIC,
        RepresentationMode.SPATIAL,
        RepresentationMode.SEMANTIC,
        RepresentationMode.SPATIAL,
        RepresentationMode.COMPACT,
    ]


def test_statistics_metadata(financial_grid):
    stats = MultiModalSpreadsheetContext().build_comprehensive_context(financial_grid).statistics

    assert (stats.numbers, stats.text, stats.formulas, stats.empty) == (2, 5, 2, 0)
    assert stats.density == 1.0
    assert (stats.min, stats.max, stats.mean) == (100, 150, 125)


def test_history_diff_types():
    store = ChangeHistoryStore()
    start = datetime(2024, 1, 1)

    store.record("A1", 1, None, timestamp=start)
    store.record("A1", 1, "=B1", timestamp=start + timedelta(seconds=1))
    store.record("B1", 2, "=C1", timestamp=start)
    store.record("B1", 3, "=C2", timestamp=start + timedelta(seconds=2))
    store.record("C1", 5, timestamp=start)
    store.record("C1", 5, timestamp=start + timedelta(seconds=3))
    store.record("D1", "new", timestamp=start + timedelta(seconds=4))

    changes = store.recent_changes()

    assert [(change.address, change.change_type) for change in changes] == [
        ("D1", ChangeType.ADDED),
        ("B1", ChangeType.MODIFIED),
        ("A1", ChangeType.FORMULA_CHANGED),
    ]
    assert changes[2].old_formula is None
    assert changes[2].new_formula == "=B1"


def test_history_is_bounded():
    store = ChangeHistoryStore(max_snapshots=3)
    for value in range(10):
        store.record("A1", value)

    assert [snapshot.value for snapshot in store.history("A1")] == [7, 8, 9]


def test_history_survives_concurrent_writers():
    store = ChangeHistoryStore(max_snapshots=50)

    def writer(worker):
        for value in range(200):
            store.record("A1", value)
            store.record(f"W{worker}", value)

    threads = [threading.Thread(target=writer, args=(idx,)) for idx in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.history("A1")) == 50
    assert sorted(store.addresses()) == sorted(["A1"] + [f"W{idx}" for idx in range(8)])
    assert all(len(store.history(f"W{idx}")) == 50 for idx in range(8))

    store.clear()
    assert store.addresses() == []
