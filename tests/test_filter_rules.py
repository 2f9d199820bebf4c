from releaseflow.models.categories import Category
from releaseflow.models.filter_rules import FilterRules, FilterSet, collect_entries


def test_collect_entries_splits_commas_and_drops_blanks():
    assert collect_entries(["docker, zip", " ", "tar"]) == frozenset({"docker", "zip", "tar"})
    assert collect_entries("A,B", lower_case=True) == frozenset({"a", "b"})
    assert collect_entries(None) == frozenset()


def test_filter_set_lower_cases_types_only():
    filter_set = FilterSet(included_types=["Docker"], included_names=["MyApp"])

    assert filter_set.included_types == frozenset({"docker"})
    assert filter_set.included_names == frozenset({"MyApp"})
    assert filter_set.has_includes
    assert not FilterSet().has_includes
    assert FilterSet().is_empty


def test_from_options_maps_each_flag_family():
    rules = FilterRules.from_options(
        included_deployers=["nexus2"],
        excluded_uploader_names=["mirror"],
        included_distributions=["app"],
        excluded_packagers=["snap"],
        included_announcers=["twitter"],
    )

    assert rules.for_category(Category.DEPLOYER).included_types == frozenset({"nexus2"})
    assert rules.for_category(Category.UPLOADER).excluded_names == frozenset({"mirror"})
    assert rules.for_category(Category.DISTRIBUTION).included_names == frozenset({"app"})
    assert rules.for_category(Category.PACKAGER).excluded_types == frozenset({"snap"})
    assert rules.for_category(Category.ANNOUNCER).included_types == frozenset({"twitter"})
    assert rules.catch_all.is_empty


def test_absent_options_mean_no_constraint():
    rules = FilterRules.from_options()

    assert rules.by_category == {}
    for category in Category:
        assert rules.for_category(category).is_empty


def test_catch_all_exclusions_are_added_to_category_exclusions():
    rules = FilterRules.from_options(excluded_packagers=["snap"], excluded_types=["jlink"])

    effective = rules.for_category(Category.PACKAGER)

    assert effective.excluded_types == frozenset({"snap", "jlink"})


def test_category_includes_replace_catch_all_includes():
    rules = FilterRules.from_options(included_packagers=["docker"], included_types=["zip"])

    assert rules.for_category(Category.PACKAGER).included_types == frozenset({"docker"})
    assert rules.for_category(Category.UPLOADER).included_types == frozenset({"zip"})
