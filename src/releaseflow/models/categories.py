from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional


class Category(str, Enum):
    """Handler families understood by the engine."""

    ANNOUNCER = "announcer"
    PACKAGER = "packager"
    UPLOADER = "uploader"
    DEPLOYER = "deployer"
    DISTRIBUTION = "distribution"


# Activation when no node between the root and the handler sets an explicit flag.
# Announcers post to public accounts, so they have to be switched on.
DEFAULT_ENABLED: Dict[Category, bool] = {
    Category.ANNOUNCER: False,
    Category.PACKAGER: True,
    Category.UPLOADER: True,
    Category.DEPLOYER: True,
    Category.DISTRIBUTION: True,
}


# Categories a child node may claim beneath a parent of the given category.
# A parent without a category (root or grouping node) accepts any category.
ALLOWED_CHILD_CATEGORIES: Dict[Category, FrozenSet[Category]] = {
    Category.ANNOUNCER: frozenset({Category.ANNOUNCER}),
    Category.PACKAGER: frozenset({Category.PACKAGER}),
    Category.UPLOADER: frozenset({Category.UPLOADER}),
    Category.DEPLOYER: frozenset({Category.DEPLOYER}),
    Category.DISTRIBUTION: frozenset({Category.DISTRIBUTION, Category.PACKAGER}),
}


def child_category_allowed(parent: Optional[Category], child: Optional[Category]) -> bool:
    if parent is None:
        return True
    if child is None:
        return False
    return child in ALLOWED_CHILD_CATEGORIES[parent]
