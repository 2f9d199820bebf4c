from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from releaseflow.core.contracts import HandlerIdentity
from releaseflow.core.exceptions import ConfigurationError
from releaseflow.models.categories import Category, child_category_allowed


_OVERLAY_FIELDS: Tuple[str, ...] = ("category", "type_id", "name", "enabled", "adapter")


class ConfigNode(BaseModel):
    """One node of the release configuration tree.

    Grouping nodes (``announce``, ``deploy/maven``) carry no ``type_id``;
    handler nodes carry one and are bound 1:1 to an executable handler.

    ``enabled`` is tri-state: ``None`` inherits from the nearest ancestor with
    an explicit flag. The effective state is never written back into the
    tree; the selection resolver computes it on demand.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    category: Optional[Category] = None
    type_id: Optional[str] = None
    name: Optional[str] = None
    enabled: Optional[bool] = None

    # Registry key of the class executing this node; defaults to type_id.
    adapter: Optional[str] = None

    settings: Dict[str, Any] = Field(default_factory=dict)
    children: Tuple["ConfigNode", ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_name_to_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("name") is None and data.get("type_id"):
            data = {**data, "name": data["type_id"]}
        return data

    @model_validator(mode="after")
    def _validate_type_id(self) -> "ConfigNode":
        if self.type_id is not None and not self.type_id.strip():
            raise ValueError(f"type_id of node {self.key!r} must not be blank")
        return self

    @property
    def is_handler(self) -> bool:
        return self.type_id is not None

    @property
    def adapter_key(self) -> Optional[str]:
        return self.adapter or self.type_id

    @property
    def identity(self) -> HandlerIdentity:
        if self.category is None or self.type_id is None:
            raise ConfigurationError(
                "Only handler nodes with a category have an identity",
                details={"key": self.key},
            )
        return HandlerIdentity(self.category, self.type_id, self.name or self.type_id)

    def merge(self, other: "ConfigNode") -> "ConfigNode":
        """Return a copy of this node overwritten by the values ``other`` sets.

        Fields explicitly set on ``other`` win, settings are shallow-merged and
        children are merged by key (first-seen order is kept, new keys are
        appended). Neither input is modified.
        """
        if other.key != self.key:
            raise ConfigurationError(
                "Cannot merge nodes with different keys",
                details={"left": self.key, "right": other.key},
            )

        merged_children: List[ConfigNode] = list(self.children)
        positions = {child.key: i for i, child in enumerate(merged_children)}
        for child in other.children:
            if child.key in positions:
                idx = positions[child.key]
                merged_children[idx] = merged_children[idx].merge(child)
            else:
                positions[child.key] = len(merged_children)
                merged_children.append(child)

        update: Dict[str, Any] = {
            field_name: getattr(other, field_name)
            for field_name in _OVERLAY_FIELDS
            if getattr(other, field_name) is not None
        }
        update["settings"] = {**self.settings, **other.settings}
        if other.name is None and other.type_id is not None and self.name == self.type_id:
            # name was defaulted from the old type id
            update["name"] = None
        data = {**self.model_dump(exclude={"children"}), **update, "children": tuple(merged_children)}
        return ConfigNode.model_validate(data)

    def walk(self) -> Iterator[Tuple["ConfigNode", Tuple["ConfigNode", ...]]]:
        """Pre-order traversal yielding ``(node, ancestors)``, root first."""
        stack: List[Tuple[ConfigNode, Tuple[ConfigNode, ...]]] = [(self, ())]
        while stack:
            node, ancestors = stack.pop()
            yield node, ancestors
            chain = ancestors + (node,)
            for child in reversed(node.children):
                stack.append((child, chain))

    def handler_nodes(self) -> Iterator[Tuple["ConfigNode", Tuple["ConfigNode", ...]]]:
        for node, ancestors in self.walk():
            if node.is_handler:
                yield node, ancestors

    def child(self, key: str) -> Optional["ConfigNode"]:
        for candidate in self.children:
            if candidate.key == key:
                return candidate
        return None

    def find(self, path: str) -> Optional["ConfigNode"]:
        """Find a descendant by slash separated key path, e.g. ``deploy/maven``."""
        node: Optional[ConfigNode] = self
        for part in [p for p in path.split("/") if p]:
            if node is None:
                return None
            node = node.child(part)
        return node

    def validate_tree(self) -> None:
        """Check the tree invariants; raise ``ConfigurationError`` on the first violation."""
        seen: Dict[HandlerIdentity, str] = {}
        for node, ancestors in self.walk():
            path = "/".join(n.key for n in ancestors + (node,))

            sibling_keys = [c.key for c in node.children]
            if len(sibling_keys) != len(set(sibling_keys)):
                raise ConfigurationError("Duplicate child keys", details={"path": path})

            parent_category = ancestors[-1].category if ancestors else None
            if ancestors and not child_category_allowed(parent_category, node.category):
                raise ConfigurationError(
                    "Node claims a category it cannot belong to",
                    details={
                        "path": path,
                        "category": node.category.value if node.category else None,
                        "parent_category": parent_category.value if parent_category else None,
                    },
                )

            if not node.is_handler:
                continue
            if node.category is None:
                raise ConfigurationError("Handler node has no category", details={"path": path})

            identity = node.identity
            if identity in seen:
                raise ConfigurationError(
                    "Duplicate handler identity",
                    details={"identity": str(identity), "paths": [seen[identity], path]},
                )
            seen[identity] = path


ConfigNode.model_rebuild()
