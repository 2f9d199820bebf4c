from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple

from releaseflow.core.exceptions import ConfigurationError
from releaseflow.models.categories import Category


class StageEnum(str, Enum):
    """Stages of the full-release workflow."""
    ASSEMBLE = "assemble"
    PACKAGE = "package"
    DEPLOY = "deploy"
    UPLOAD = "upload"
    ANNOUNCE = "announce"


@dataclass(frozen=True)
class Stage:
    """Named pipeline phase running the active handlers of its categories.

    A stage owns no handlers; it is handed the selection at run time.
    """
    name: str
    categories: Tuple[Category, ...]
    fail_fast: bool = False


# Distributions and packagers feed everything after them, and a partial deploy
# to an artifact repository cannot be taken back, so those stages abort the run.
FULL_RELEASE_STAGES: Tuple[Stage, ...] = (
    Stage(StageEnum.ASSEMBLE.value, (Category.DISTRIBUTION,), fail_fast=True),
    Stage(StageEnum.PACKAGE.value, (Category.PACKAGER,), fail_fast=True),
    Stage(StageEnum.DEPLOY.value, (Category.DEPLOYER,), fail_fast=True),
    Stage(StageEnum.UPLOAD.value, (Category.UPLOADER,)),
    Stage(StageEnum.ANNOUNCE.value, (Category.ANNOUNCER,)),
)


def validate_stages(stages: Iterable[Stage]) -> Tuple[Stage, ...]:
    """A category may only belong to one stage, and stage names are unique."""
    stages = tuple(stages)
    names = set()
    owners = {}
    for stage in stages:
        if stage.name in names:
            raise ConfigurationError("Duplicate stage name", details={"stage": stage.name})
        names.add(stage.name)
        for category in stage.categories:
            if category in owners:
                raise ConfigurationError(
                    "Category assigned to more than one stage",
                    details={"category": category.value, "stages": [owners[category], stage.name]},
                )
            owners[category] = stage.name
    return stages


def stages_named(names: Iterable[str], stages: Iterable[Stage] = FULL_RELEASE_STAGES) -> Tuple[Stage, ...]:
    """Subset of ``stages`` keeping the declared order, e.g. for a partial workflow."""
    wanted = set(names)
    known = {stage.name for stage in stages}
    unknown = sorted(wanted - known)
    if unknown:
        raise ConfigurationError("Unknown stage name(s)", details={"stages": unknown})
    return tuple(stage for stage in stages if stage.name in wanted)
