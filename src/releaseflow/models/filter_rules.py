from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from releaseflow.models.categories import Category


def collect_entries(values: Optional[Iterable[str]], lower_case: bool = False) -> FrozenSet[str]:
    """Normalize user supplied selectors.

    Each value may hold several comma separated entries; blanks are dropped.
    Type selectors are compared case-insensitively, so they are lower-cased.
    """
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    entries = set()
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part:
                entries.add(part.lower() if lower_case else part)
    return frozenset(entries)


class FilterSet(BaseModel):
    """Include/exclude selectors for one category, split into type and name axes.

    An empty set puts no constraint on its axis.
    """

    model_config = ConfigDict(frozen=True)

    included_types: FrozenSet[str] = frozenset()
    excluded_types: FrozenSet[str] = frozenset()
    included_names: FrozenSet[str] = frozenset()
    excluded_names: FrozenSet[str] = frozenset()

    @field_validator("included_types", "excluded_types", mode="before")
    @classmethod
    def _normalize_types(cls, value: Any) -> FrozenSet[str]:
        return collect_entries(value, lower_case=True)

    @field_validator("included_names", "excluded_names", mode="before")
    @classmethod
    def _normalize_names(cls, value: Any) -> FrozenSet[str]:
        return collect_entries(value)

    @property
    def has_includes(self) -> bool:
        return bool(self.included_types or self.included_names)

    @property
    def is_empty(self) -> bool:
        return not (self.has_includes or self.excluded_types or self.excluded_names)


class FilterRules(BaseModel):
    """Filter sets keyed by category plus a catch-all set applied to every category."""

    model_config = ConfigDict(frozen=True)

    by_category: Dict[Category, FilterSet] = Field(default_factory=dict)
    catch_all: FilterSet = Field(default_factory=FilterSet)

    def for_category(self, category: Category) -> FilterSet:
        """Effective filter for one category.

        Exclusions from the category and the catch-all are combined. Inclusions
        come from the category set when it names any, otherwise from the
        catch-all set.
        """
        own = self.by_category.get(category, FilterSet())
        if self.catch_all.is_empty:
            return own

        includes = own if own.has_includes else self.catch_all
        return FilterSet(
            included_types=includes.included_types,
            included_names=includes.included_names,
            excluded_types=own.excluded_types | self.catch_all.excluded_types,
            excluded_names=own.excluded_names | self.catch_all.excluded_names,
        )

    @classmethod
    def from_options(
        cls,
        *,
        included_deployers: Optional[Iterable[str]] = None,
        excluded_deployers: Optional[Iterable[str]] = None,
        included_deployer_names: Optional[Iterable[str]] = None,
        excluded_deployer_names: Optional[Iterable[str]] = None,
        included_uploaders: Optional[Iterable[str]] = None,
        excluded_uploaders: Optional[Iterable[str]] = None,
        included_uploader_names: Optional[Iterable[str]] = None,
        excluded_uploader_names: Optional[Iterable[str]] = None,
        included_distributions: Optional[Iterable[str]] = None,
        excluded_distributions: Optional[Iterable[str]] = None,
        included_packagers: Optional[Iterable[str]] = None,
        excluded_packagers: Optional[Iterable[str]] = None,
        included_announcers: Optional[Iterable[str]] = None,
        excluded_announcers: Optional[Iterable[str]] = None,
        included_types: Optional[Iterable[str]] = None,
        excluded_types: Optional[Iterable[str]] = None,
        included_names: Optional[Iterable[str]] = None,
        excluded_names: Optional[Iterable[str]] = None,
    ) -> "FilterRules":
        """Build rules from full-release options; absent options mean no constraint.

        Deployers and uploaders are addressed by type and by name,
        distributions by name, packagers and announcers by type.
        """
        by_category = {
            Category.DEPLOYER: FilterSet(
                included_types=included_deployers,
                excluded_types=excluded_deployers,
                included_names=included_deployer_names,
                excluded_names=excluded_deployer_names,
            ),
            Category.UPLOADER: FilterSet(
                included_types=included_uploaders,
                excluded_types=excluded_uploaders,
                included_names=included_uploader_names,
                excluded_names=excluded_uploader_names,
            ),
            Category.DISTRIBUTION: FilterSet(
                included_names=included_distributions,
                excluded_names=excluded_distributions,
            ),
            Category.PACKAGER: FilterSet(
                included_types=included_packagers,
                excluded_types=excluded_packagers,
            ),
            Category.ANNOUNCER: FilterSet(
                included_types=included_announcers,
                excluded_types=excluded_announcers,
            ),
        }
        return cls(
            by_category={k: v for k, v in by_category.items() if not v.is_empty},
            catch_all=FilterSet(
                included_types=included_types,
                excluded_types=excluded_types,
                included_names=included_names,
                excluded_names=excluded_names,
            ),
        )
