from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from releaseflow.core.contracts import HandlerIdentity
from releaseflow.core.logger import get_logger
from releaseflow.models.categories import DEFAULT_ENABLED, Category
from releaseflow.models.config_node import ConfigNode
from releaseflow.models.filter_rules import FilterRules, FilterSet


@dataclass(frozen=True)
class Decision:
    active: bool
    reason: str


@dataclass(frozen=True)
class Candidate:
    """A handler node together with its ancestor chain and selection decision."""

    node: ConfigNode
    ancestors: Tuple[ConfigNode, ...]
    decision: Decision

    @property
    def identity(self) -> HandlerIdentity:
        return self.node.identity

    @property
    def path(self) -> str:
        return "/".join(n.key for n in self.ancestors + (self.node,))


@dataclass(frozen=True)
class Selection:
    """Every handler of a tree with its decision, in tree insertion order."""

    candidates: Tuple[Candidate, ...]
    tree: Optional[ConfigNode] = None

    def for_category(self, category: Category) -> Tuple[Candidate, ...]:
        return tuple(c for c in self.candidates if c.node.category is category)

    def active(self) -> Dict[Category, Tuple[HandlerIdentity, ...]]:
        result: Dict[Category, Tuple[HandlerIdentity, ...]] = {category: () for category in Category}
        for candidate in self.candidates:
            if candidate.decision.active:
                category = candidate.identity.category
                result[category] = result[category] + (candidate.identity,)
        return result

    def active_candidates(self) -> Iterator[Candidate]:
        return (c for c in self.candidates if c.decision.active)

    def is_active(self, identity: HandlerIdentity) -> bool:
        return any(c.identity == identity and c.decision.active for c in self.candidates)


class SelectionResolver:
    """Decide which handlers of a configuration tree run in the current run.

    The decision for one handler only depends on its ancestor chain and on the
    filter set of its category, so resolving the same inputs twice always
    yields the same selection.
    """

    def __init__(
        self,
        filters: Optional[FilterRules] = None,
        *,
        defaults: Optional[Mapping[Category, bool]] = None,
    ):
        self.filters = filters or FilterRules()
        self.defaults: Dict[Category, bool] = dict(DEFAULT_ENABLED)
        if defaults:
            self.defaults.update(defaults)
        self.log = get_logger(__name__)

    def decide(self, node: ConfigNode, ancestors: Tuple[ConfigNode, ...]) -> Decision:
        chain = ancestors + (node,)
        category = node.identity.category

        # A disabled node switches off its whole subtree; filters are not consulted.
        for link in chain:
            if link.enabled is False:
                if link is node:
                    return Decision(False, "disabled")
                return Decision(False, f"disabled by '{link.key}'")

        # Handlers nested in a distribution follow the distribution selectors for that distribution.
        distribution_filter = self.filters.by_category.get(Category.DISTRIBUTION)
        if distribution_filter is not None and category is not Category.DISTRIBUTION:
            for link in ancestors:
                if link.is_handler and link.category is Category.DISTRIBUTION:
                    if self._filter_gate(link, distribution_filter) is not None:
                        return Decision(False, f"excluded with distribution '{link.identity.name}'")

        rejected = self._filter_gate(node)
        if rejected is not None:
            return Decision(False, rejected)

        if node.enabled is None:
            for link in reversed(ancestors):
                if link.enabled is not None:
                    return Decision(True, f"enabled by '{link.key}'")
            if not self.defaults.get(category, True):
                return Decision(False, f"{category.value}s are disabled by default")
            return Decision(True, "enabled by default")

        return Decision(True, "enabled")

    def _filter_gate(self, node: ConfigNode, filter_set: Optional[FilterSet] = None) -> Optional[str]:
        """Reason the filters reject ``node``, or ``None`` when it passes."""
        if filter_set is None:
            filter_set = self.filters.for_category(node.identity.category)
        type_id = node.type_id.lower()
        name = node.identity.name

        if type_id in filter_set.excluded_types:
            return f"excluded by type '{type_id}'"
        if name in filter_set.excluded_names:
            return f"excluded by name '{name}'"
        return _include_gate(filter_set, type_id, name)

    def selection(self, tree: ConfigNode) -> Selection:
        candidates: List[Candidate] = []
        for node, ancestors in tree.handler_nodes():
            decision = self.decide(node, ancestors)
            candidate = Candidate(node=node, ancestors=ancestors, decision=decision)
            self.log.debug(f"{candidate.identity} -> active={decision.active} ({decision.reason})")
            candidates.append(candidate)
        return Selection(candidates=tuple(candidates), tree=tree)

    def resolve(self, tree: ConfigNode) -> Dict[Category, Tuple[HandlerIdentity, ...]]:
        return self.selection(tree).active()


def _include_gate(filter_set: FilterSet, type_id: str, name: str) -> Optional[str]:
    type_match = type_id in filter_set.included_types
    name_match = name in filter_set.included_names

    # An explicit match on one axis overrides an unmatched restriction on the other.
    if filter_set.included_types and not type_match and not (filter_set.included_names and name_match):
        return f"type '{type_id}' not included"
    if filter_set.included_names and not name_match and not (filter_set.included_types and type_match):
        return f"name '{name}' not included"
    return None


def resolve(
    tree: ConfigNode, filters: Optional[FilterRules] = None
) -> Dict[Category, Tuple[HandlerIdentity, ...]]:
    """Active handler identities per category, in tree order."""
    return SelectionResolver(filters).resolve(tree)
