"""releaseflow.

Release pipeline engine: decides which configured handlers (distributions,
packagers, deployers, uploaders, announcers) take part in a release, then
runs them stage by stage and reports every handler's outcome.

Public API for hosts driving releases from build scripts or CI jobs.
"""

from releaseflow.changelog.checksums import adjust_changelog
from releaseflow.cli import main, validate_config
from releaseflow.models.categories import Category
from releaseflow.models.config_node import ConfigNode
from releaseflow.models.filter_rules import FilterRules, FilterSet
from releaseflow.orchestrator import ReleaseOrchestrator, run_release
from releaseflow.pipeline.executor import StagePipeline
from releaseflow.pipeline.reporter import PipelineResult
from releaseflow.pipeline.stages import FULL_RELEASE_STAGES, Stage
from releaseflow.selection.resolver import SelectionResolver, resolve

__version__ = "0.1.0"

__all__ = [
    "ReleaseOrchestrator",
    "run_release",
    "main",
    "validate_config",
    "Category",
    "ConfigNode",
    "FilterRules",
    "FilterSet",
    "SelectionResolver",
    "resolve",
    "StagePipeline",
    "Stage",
    "FULL_RELEASE_STAGES",
    "PipelineResult",
    "adjust_changelog",
]
