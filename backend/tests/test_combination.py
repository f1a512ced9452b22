"""Tests for nursebonus.services.combination."""

from collections.abc import Callable

from nursebonus.services.catalog import BonusCatalog, BonusRule
from nursebonus.services.combination import (
    ConflictGraph,
    ResolvedCombination,
    conflict_groups,
    declares_conflict,
    resolve,
)

RowFactory = Callable[..., dict[str, object]]


def _rule(make_row: RowFactory, code: str, **overrides: object) -> BonusRule:
    return BonusRule.from_dict(make_row(code, **overrides))


class TestDeclaresConflict:
    def test_one_sided_declaration_is_symmetric(self, make_row: RowFactory) -> None:
        a: BonusRule = _rule(make_row, "a", cannot_combine_with=["b"])
        b: BonusRule = _rule(make_row, "b")
        assert declares_conflict(a, b)
        assert declares_conflict(b, a)

    def test_one_sided_allow_does_not_override(self, make_row: RowFactory) -> None:
        a: BonusRule = _rule(make_row, "a", cannot_combine_with=["b"])
        b: BonusRule = _rule(make_row, "b", can_combine_with=["a"])
        assert declares_conflict(a, b)
        assert declares_conflict(b, a)

    def test_no_self_conflict(self, make_row: RowFactory) -> None:
        a: BonusRule = _rule(make_row, "a", cannot_combine_with=["a"])
        assert not declares_conflict(a, a)


class TestConflictGraph:
    def test_edges_only_between_overlapping_windows(self, make_row: RowFactory) -> None:
        old_a: BonusRule = _rule(
            make_row,
            "a",
            valid_from="2022-04-01",
            valid_to="2023-04-01",
            cannot_combine_with=["b"],
        )
        b: BonusRule = _rule(make_row, "b", valid_from="2024-04-01")
        graph: ConflictGraph = ConflictGraph.build([old_a, b])
        assert len(graph) == 0

    def test_built_once_by_catalog(self, make_row: RowFactory) -> None:
        catalog: BonusCatalog = BonusCatalog.load(
            [make_row("a", cannot_combine_with=["b"]), make_row("b"), make_row("c")]
        )
        a: BonusRule = catalog.versions("a")[0]
        b: BonusRule = catalog.versions("b")[0]
        assert catalog.graph.conflicts(a, b)
        assert catalog.graph.conflicts(b, a)
        assert len(catalog.graph) == 1


class TestResolve:
    def test_lower_display_order_wins(self, make_row: RowFactory) -> None:
        a: BonusRule = _rule(make_row, "a", display_order=20, cannot_combine_with=["b"])
        b: BonusRule = _rule(make_row, "b", display_order=10)
        result: ResolvedCombination = resolve([a, b])
        assert [r.code for r in result.kept] == ["b"]
        assert result.suppressed[0].rule.code == "a"
        assert result.suppressed[0].suppressed_by.code == "b"

    def test_tie_breaks_on_code(self, make_row: RowFactory) -> None:
        z: BonusRule = _rule(make_row, "z", cannot_combine_with=["y"])
        y: BonusRule = _rule(make_row, "y")
        assert [r.code for r in resolve([z, y]).kept] == ["y"]

    def test_input_order_does_not_matter(self, make_row: RowFactory) -> None:
        rules: list[BonusRule] = [
            _rule(make_row, "a", display_order=1, cannot_combine_with=["b"]),
            _rule(make_row, "b", display_order=2, cannot_combine_with=["c"]),
            _rule(make_row, "c", display_order=3),
        ]
        forward: ResolvedCombination = resolve(rules)
        backward: ResolvedCombination = resolve(list(reversed(rules)))
        assert forward == backward
        # b is suppressed by a, so c no longer has a kept rival.
        assert [r.code for r in forward.kept] == ["a", "c"]

    def test_unrelated_rules_all_kept(self, make_row: RowFactory) -> None:
        rules: list[BonusRule] = [_rule(make_row, "a"), _rule(make_row, "b")]
        result: ResolvedCombination = resolve(rules)
        assert len(result.kept) == 2
        assert result.suppressed == ()

    def test_conflict_groups(self, make_row: RowFactory) -> None:
        rules: list[BonusRule] = [
            _rule(make_row, "a", cannot_combine_with=["b"]),
            _rule(make_row, "b"),
            _rule(make_row, "c"),
        ]
        groups: list[list[BonusRule]] = conflict_groups(rules, ConflictGraph.build(rules))
        assert [[r.code for r in g] for g in groups] == [["a", "b"], ["c"]]
