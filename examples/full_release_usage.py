"""
Example: Running a release with ReleaseOrchestrator.

This shows the separation between:
- Design-time config: the release document (examples/release.yaml)
- Runtime parameters: run id, dry-run flag and filters chosen by the CI job
"""

import yaml

from releaseflow import FilterRules, ReleaseOrchestrator

with open("examples/release.yaml") as f:
    config_dict = yaml.safe_load(f)


# =============================================================================
# Example 1: Dry run of the whole workflow
# =============================================================================
orchestrator = ReleaseOrchestrator(run_id="release_20260118_140530", dry_run=True)

result = orchestrator.run(config_dict)
print(f"Dry run finished: {result.status.value} {result.counts()}")
for identity, outcome in result.outcomes.items():
    print(f"   {identity}: {outcome.status.value} ({outcome.reason})")


# =============================================================================
# Example 2: Only the docker images and the main upload, no announcements
# =============================================================================
filters = FilterRules.from_options(
    included_packagers=["docker"],
    included_uploader_names=["main"],
    excluded_announcers=["twitter,slack"],
)

selection = ReleaseOrchestrator().plan(config_dict, filters)
for candidate in selection.candidates:
    print(f"{candidate.path}: active={candidate.decision.active} ({candidate.decision.reason})")


# =============================================================================
# Example 3: Real run from a CI job with a cancel switch
# =============================================================================
"""
import os
import threading

from releaseflow import adjust_changelog

cancel = threading.Event()          # set from a signal handler to stop starting handlers
result = ReleaseOrchestrator(run_id=os.environ["CI_PIPELINE_ID"], max_workers=4).run(
    config_dict, filters, cancel_event=cancel
)
result.raise_for_failure()          # ReleaseAbortedError if a fail-fast stage failed

# Fill the sha256 placeholders of the release notes
adjust_changelog("out/checksums/checksums_sha256.txt", "out/CHANGELOG.md")
"""
