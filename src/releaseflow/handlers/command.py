from __future__ import annotations

import os
import shlex
import subprocess
from string import Template
from typing import Dict, List, Mapping, Optional, Union

from releaseflow.core.base_handler import BaseHandler
from releaseflow.core.contracts import ExecutionContext, Outcome
from releaseflow.core.exceptions import HandlerFailure
from releaseflow.handlers.registry import register_handler
from releaseflow.models.categories import Category


DEFAULT_TIMEOUT_SECONDS = 300


@register_handler(category=list(Category), adapter="command")
class CommandHandler(BaseHandler):
    """
    Generic adapter that runs an external command for any handler category.

    Settings:
    - command: string (split with shlex) or list of arguments. Required.
    - timeout: seconds before the command is killed (default: 300).
    - cwd: working directory for the command.
    - env: extra environment variables.

    The run id, project name/version and handler name are exported as
    ``RELEASEFLOW_*`` environment variables. No shell is started: ``$NAME`` and
    ``${NAME}`` references in the arguments are expanded from the command
    environment, unknown names are left as written. In dry-run mode the
    command is logged but not started.
    """

    def _environment(self, context: ExecutionContext) -> Dict[str, str]:
        env = {
            "RELEASEFLOW_RUN_ID": context.run_id,
            "RELEASEFLOW_PROJECT_NAME": context.project_name,
            "RELEASEFLOW_PROJECT_VERSION": context.project_version or "",
            "RELEASEFLOW_HANDLER_NAME": self.identity.name,
            "RELEASEFLOW_HANDLER_TYPE": self.identity.type_id,
        }
        env.update({str(k): str(v) for k, v in (self.settings.get("env") or {}).items()})
        return {**os.environ, **env}

    def _argv(self, env: Mapping[str, str]) -> List[str]:
        command: Union[str, List[str], None] = self.settings.get("command")
        if not command:
            raise HandlerFailure(f"No command configured for {self.identity}")
        args = shlex.split(command) if isinstance(command, str) else [str(arg) for arg in command]
        return [Template(arg).safe_substitute(env) for arg in args]

    def execute(self, context: ExecutionContext) -> Optional[Outcome]:
        full_env = self._environment(context)
        argv = self._argv(full_env)
        if context.dry_run:
            self.log_info(f"[dryrun] would run: {shlex.join(argv)}")
            return Outcome.succeeded("dry-run")

        timeout = float(self.settings.get("timeout", DEFAULT_TIMEOUT_SECONDS))
        self.log_info(f"Running: {shlex.join(argv)} (timeout={timeout}s)")
        # TimeoutExpired propagates and is reported as a failure by the pipeline
        completed = subprocess.run(
            argv,
            cwd=self.settings.get("cwd"),
            env=full_env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
        if completed.stdout:
            self.log.debug(completed.stdout.rstrip())
        stderr = (completed.stderr or "").strip().splitlines()
        if completed.returncode != 0:
            detail = stderr[-1] if stderr else "no output"
            raise HandlerFailure(f"Command exited with status {completed.returncode}: {detail}")
        if stderr:
            self.log_warn(f"Command succeeded with stderr output: {stderr[-1]}")
        return None
