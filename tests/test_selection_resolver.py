from releaseflow.models.categories import Category
from releaseflow.models.config_node import ConfigNode
from releaseflow.models.filter_rules import FilterRules, FilterSet
from releaseflow.selection.resolver import SelectionResolver, resolve


def _packager(name, type_id, **kwargs):
    return ConfigNode(key=name, category=Category.PACKAGER, type_id=type_id, name=name, **kwargs)


def _packager_tree(*handlers, enabled=None):
    group = ConfigNode(key="packagers", category=Category.PACKAGER, enabled=enabled, children=tuple(handlers))
    return ConfigNode(key="release", children=(group,))


def _names(identities):
    return [identity.name for identity in identities]


def test_docker_include_with_name_exclusion_keeps_only_full_image():
    tree = _packager_tree(
        _packager("docker-full", "docker"),
        _packager("docker-slim", "docker"),
        _packager("zip", "zip"),
    )
    filters = FilterRules(
        by_category={
            Category.PACKAGER: FilterSet(included_types=["docker"], excluded_names=["docker-slim"]),
        }
    )

    active = resolve(tree, filters)

    assert _names(active[Category.PACKAGER]) == ["docker-full"]


def test_every_category_is_present_in_result():
    active = resolve(_packager_tree())

    assert set(active) == set(Category)
    assert all(v == () for v in active.values())


def test_disabled_ancestor_wins_over_include_rules():
    tree = _packager_tree(_packager("docker-full", "docker", enabled=True), enabled=False)
    filters = FilterRules(by_category={Category.PACKAGER: FilterSet(included_names=["docker-full"])})

    selection = SelectionResolver(filters).selection(tree)

    (candidate,) = selection.candidates
    assert candidate.decision.active is False
    assert candidate.decision.reason == "disabled by 'packagers'"


def test_disabled_node_reports_own_flag():
    tree = _packager_tree(_packager("zip", "zip", enabled=False))

    (candidate,) = SelectionResolver().selection(tree).candidates

    assert candidate.decision.active is False
    assert candidate.decision.reason == "disabled"


def test_exclusion_beats_inclusion_on_same_axis_and_across_axes():
    tree = _packager_tree(_packager("docker-full", "docker"), _packager("zip", "zip"))
    filters = FilterRules(
        by_category={
            Category.PACKAGER: FilterSet(
                included_types=["docker", "zip"],
                excluded_types=["docker"],
                included_names=["zip"],
                excluded_names=["zip"],
            )
        }
    )

    selection = SelectionResolver(filters).selection(tree)

    assert [c.decision.active for c in selection.candidates] == [False, False]
    assert selection.candidates[0].decision.reason == "excluded by type 'docker'"
    assert selection.candidates[1].decision.reason == "excluded by name 'zip'"


def test_name_include_overrides_unmatched_type_include():
    tree = _packager_tree(_packager("docker-full", "docker"), _packager("zip", "zip"), _packager("tar", "tar"))
    filters = FilterRules(
        by_category={Category.PACKAGER: FilterSet(included_types=["docker"], included_names=["zip"])}
    )

    active = resolve(tree, filters)

    assert _names(active[Category.PACKAGER]) == ["docker-full", "zip"]


def test_type_selectors_are_case_insensitive():
    tree = _packager_tree(_packager("img", "Docker"))
    filters = FilterRules(by_category={Category.PACKAGER: FilterSet(included_types=["DOCKER"])})

    assert _names(resolve(tree, filters)[Category.PACKAGER]) == ["img"]


def test_resolution_is_idempotent():
    tree = _packager_tree(
        _packager("docker-full", "docker"),
        _packager("docker-slim", "docker", enabled=False),
        _packager("zip", "zip"),
    )
    filters = FilterRules(by_category={Category.PACKAGER: FilterSet(excluded_types=["zip"])})

    assert resolve(tree, filters) == resolve(tree, filters)


def test_announcers_need_an_explicit_flag():
    announce = ConfigNode(
        key="announce",
        category=Category.ANNOUNCER,
        children=(ConfigNode(key="twitter", category=Category.ANNOUNCER, type_id="twitter"),),
    )
    tree = ConfigNode(key="release", children=(announce,))

    (candidate,) = SelectionResolver().selection(tree).candidates
    assert candidate.decision.active is False
    assert candidate.decision.reason == "announcers are disabled by default"

    enabled_tree = ConfigNode(key="release", children=(announce.model_copy(update={"enabled": True}),))
    (candidate,) = SelectionResolver().selection(enabled_tree).candidates
    assert candidate.decision.active is True
    assert candidate.decision.reason == "enabled by 'announce'"


def test_defaults_can_be_overridden_per_category():
    tree = _packager_tree(_packager("zip", "zip"))

    resolver = SelectionResolver(defaults={Category.PACKAGER: False})

    assert resolver.resolve(tree)[Category.PACKAGER] == ()


def test_catch_all_applies_to_every_category():
    uploads = ConfigNode(
        key="upload",
        category=Category.UPLOADER,
        children=(ConfigNode(key="main", category=Category.UPLOADER, type_id="artifactory", name="main"),),
    )
    tree = ConfigNode(key="release", children=(uploads, _packager_tree(_packager("zip", "zip")).children[0]))
    filters = FilterRules.from_options(excluded_names=["main"])

    active = resolve(tree, filters)

    assert active[Category.UPLOADER] == ()
    assert _names(active[Category.PACKAGER]) == ["zip"]


def test_handlers_are_never_invented():
    active = resolve(ConfigNode(key="release"), FilterRules.from_options(included_packagers=["docker"]))

    assert active[Category.PACKAGER] == ()


def test_selection_keeps_tree_order_for_reporting():
    tree = _packager_tree(_packager("b", "zip"), _packager("a", "tar"), _packager("c", "docker"))

    selection = SelectionResolver().selection(tree)

    assert [c.identity.name for c in selection.candidates] == ["b", "a", "c"]
    assert [c.path for c in selection.candidates] == ["release/packagers/b", "release/packagers/a", "release/packagers/c"]
    assert selection.tree is tree


def _distribution(name, *packagers):
    return ConfigNode(
        key=name,
        category=Category.DISTRIBUTION,
        type_id="java-binary",
        name=name,
        children=tuple(
            ConfigNode(key=t, category=Category.PACKAGER, type_id=t, name=f"{name}-{t}") for t in packagers
        ),
    )


def _distribution_tree():
    group = ConfigNode(
        key="distributions",
        category=Category.DISTRIBUTION,
        children=(_distribution("app", "docker"), _distribution("cli", "docker")),
    )
    return ConfigNode(key="release", children=(group,))


def test_packagers_follow_distribution_selection():
    selection = SelectionResolver(FilterRules.from_options(included_distributions=["app"])).selection(
        _distribution_tree()
    )

    decisions = {c.identity.name: c.decision for c in selection.candidates}
    assert decisions["app"].active and decisions["app-docker"].active
    assert decisions["cli"].active is False
    assert decisions["cli-docker"].active is False
    assert decisions["cli-docker"].reason == "excluded with distribution 'cli'"


def test_excluded_distribution_excludes_its_packagers():
    active = resolve(_distribution_tree(), FilterRules.from_options(excluded_distributions=["cli"]))

    assert _names(active[Category.DISTRIBUTION]) == ["app"]
    assert _names(active[Category.PACKAGER]) == ["app-docker"]


def test_catch_all_type_selection_does_not_drop_nested_packagers():
    active = resolve(_distribution_tree(), FilterRules.from_options(included_types=["docker"]))

    assert _names(active[Category.PACKAGER]) == ["app-docker", "cli-docker"]
