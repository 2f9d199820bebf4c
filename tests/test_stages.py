import pytest

from releaseflow.core.exceptions import ConfigurationError
from releaseflow.models.categories import Category
from releaseflow.pipeline.stages import FULL_RELEASE_STAGES, Stage, stages_named, validate_stages


def test_full_release_order_and_fail_fast_policy():
    assert [s.name for s in FULL_RELEASE_STAGES] == ["assemble", "package", "deploy", "upload", "announce"]
    assert {s.name for s in FULL_RELEASE_STAGES if s.fail_fast} == {"assemble", "package", "deploy"}


def test_every_category_has_exactly_one_stage():
    covered = [c for s in FULL_RELEASE_STAGES for c in s.categories]

    assert sorted(covered) == sorted(Category)
    assert validate_stages(FULL_RELEASE_STAGES) == FULL_RELEASE_STAGES


def test_category_in_two_stages_is_rejected():
    with pytest.raises(ConfigurationError, match="more than one stage"):
        validate_stages([Stage("a", (Category.UPLOADER,)), Stage("b", (Category.UPLOADER,))])


def test_duplicate_stage_names_are_rejected():
    with pytest.raises(ConfigurationError, match="Duplicate stage name"):
        validate_stages([Stage("a", (Category.UPLOADER,)), Stage("a", (Category.DEPLOYER,))])


def test_stages_named_keeps_declared_order():
    assert [s.name for s in stages_named(["announce", "package"])] == ["package", "announce"]

    with pytest.raises(ConfigurationError, match="Unknown stage"):
        stages_named(["publish"])
