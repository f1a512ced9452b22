"""Mutual-exclusion resolution between satisfied bonus rules.

Two rules conflict when either lists the other's code in
``cannot_combine_with``, unless both list each other in ``can_combine_with``.
Conflicts are symmetric and are only drawn between versions whose validity
windows overlap; they are computed once, when the catalog is built.

Within each connected group of conflicting satisfied rules the rule with the
lowest ``display_order`` (ties: lowest code) is kept and every rule that
conflicts with an already-kept rule is suppressed. Walking all satisfied rules
in that priority order yields the same result as walking each group on its own,
because rules in different groups never share an edge.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from nursebonus.services.catalog import BonusRule

logger = structlog.get_logger(__name__)

RuleKey = tuple[str, str]


def declares_conflict(a: "BonusRule", b: "BonusRule") -> bool:
    """Symmetric: does either rule refuse to combine with the other?"""
    if a.code == b.code:
        return False
    refused: bool = b.code in a.cannot_combine_with or a.code in b.cannot_combine_with
    mutually_allowed: bool = b.code in a.can_combine_with and a.code in b.can_combine_with
    return refused and not mutually_allowed


@dataclass(frozen=True)
class ConflictGraph:
    """Undirected adjacency between rule versions, keyed by (code, version)."""

    edges: Mapping[RuleKey, frozenset[RuleKey]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(cls, rules: Iterable["BonusRule"]) -> "ConflictGraph":
        by_code: dict[str, list["BonusRule"]] = defaultdict(list)
        active: list["BonusRule"] = [r for r in rules if r.is_active]
        for rule in active:
            by_code[rule.code].append(rule)

        adjacency: dict[RuleKey, set[RuleKey]] = defaultdict(set)
        for rule in active:
            for other_code in rule.cannot_combine_with:
                for other in by_code.get(other_code, ()):
                    if rule.overlaps(other) and declares_conflict(rule, other):
                        adjacency[rule.key].add(other.key)
                        adjacency[other.key].add(rule.key)

        return cls(MappingProxyType({k: frozenset(v) for k, v in adjacency.items()}))

    def neighbours(self, rule: "BonusRule") -> frozenset[RuleKey]:
        return self.edges.get(rule.key, frozenset())

    def conflicts(self, a: "BonusRule", b: "BonusRule") -> bool:
        return b.key in self.neighbours(a)

    def __len__(self) -> int:
        return sum(len(v) for v in self.edges.values()) // 2


@dataclass(frozen=True, slots=True)
class Suppression:
    rule: "BonusRule"
    suppressed_by: "BonusRule"


@dataclass(frozen=True, slots=True)
class ResolvedCombination:
    kept: tuple["BonusRule", ...]
    suppressed: tuple[Suppression, ...]


def conflict_groups(
    satisfied: Sequence["BonusRule"], graph: ConflictGraph
) -> list[list["BonusRule"]]:
    """Connected components of ``graph`` restricted to ``satisfied``, each in priority order."""
    by_key: dict[RuleKey, "BonusRule"] = {r.key: r for r in satisfied}
    seen: set[RuleKey] = set()
    groups: list[list["BonusRule"]] = []
    for rule in sorted(satisfied, key=lambda r: r.priority):
        if rule.key in seen:
            continue
        stack: list[RuleKey] = [rule.key]
        group: list["BonusRule"] = []
        seen.add(rule.key)
        while stack:
            current: "BonusRule" = by_key[stack.pop()]
            group.append(current)
            for key in graph.neighbours(current):
                if key in by_key and key not in seen:
                    seen.add(key)
                    stack.append(key)
        groups.append(sorted(group, key=lambda r: r.priority))
    return groups


def resolve(
    satisfied: Sequence["BonusRule"], graph: ConflictGraph | None = None
) -> ResolvedCombination:
    """Keep the highest-priority rule of every conflict, suppress the rest.

    ``graph`` defaults to one built from ``satisfied`` alone, which is what a
    caller without a catalog wants.
    """
    conflicts: ConflictGraph = graph if graph is not None else ConflictGraph.build(satisfied)
    kept: dict[RuleKey, "BonusRule"] = {}
    suppressed: list[Suppression] = []

    for rule in sorted(satisfied, key=lambda r: r.priority):
        blockers: list["BonusRule"] = [
            kept[key] for key in conflicts.neighbours(rule) if key in kept
        ]
        if blockers:
            winner: "BonusRule" = min(blockers, key=lambda r: r.priority)
            suppressed.append(Suppression(rule, winner))
            logger.debug(
                "bonus_suppressed",
                code=rule.code,
                version=rule.version,
                suppressed_by=winner.code,
            )
            continue
        kept[rule.key] = rule

    return ResolvedCombination(tuple(kept.values()), tuple(suppressed))
