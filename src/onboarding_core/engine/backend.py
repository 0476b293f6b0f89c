"""Subprocess-based decision maker for command-line LLM agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path

from onboarding_core.engine.errors import DecisionBackendError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500


class CommandDecisionMaker:
    """Ask an external agent CLI for one decision per prompt.

    The command template is rendered per call with ``{prompt}`` (the prompt
    text) and/or ``{prompt_file}`` (a temporary file holding the same text).
    The process must print the decision payload on stdout and exit with 0.
    """

    def __init__(
        self,
        command_template: str,
        *,
        timeout_seconds: float,
        agent_id: str = "onboarding_agent",
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        _check_template(command_template)
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds
        self.agent_id = agent_id

    def decide(self, prompt: str) -> str:
        with tempfile.TemporaryDirectory(prefix="onboarding-agent-") as workdir:
            prompt_file = Path(workdir) / "prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args = _build_run_args(
                command_template=self.command_template,
                prompt=prompt,
                prompt_file=prompt_file,
            )

            env = os.environ.copy()
            env["ONBOARDING_CORE_AGENT_ID"] = self.agent_id

            try:
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError as error:
                raise DecisionBackendError(
                    f"Agent command not found: {run_args[0]}",
                    transient=False,
                ) from error
            except subprocess.TimeoutExpired as error:
                raise DecisionBackendError(
                    f"Agent command timed out after {self.timeout_seconds:g}s",
                    transient=True,
                ) from error
            except OSError as error:
                raise DecisionBackendError(
                    f"Agent command failed to start: {error}",
                    transient=True,
                ) from error

        if completed.returncode != 0:
            stderr_tail = completed.stderr.strip()[-STDERR_TAIL_CHARS:]
            raise DecisionBackendError(
                f"Agent command exited with code {completed.returncode}: {stderr_tail}",
                transient=False,
            )
        logger.debug(
            "Agent %s answered with %d chars",
            self.agent_id,
            len(completed.stdout),
        )
        return completed.stdout


def _check_template(command_template: str) -> None:
    stripped = command_template.strip()
    if not stripped:
        raise DecisionBackendError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise DecisionBackendError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )


def _build_run_args(*, command_template: str, prompt: str, prompt_file: Path) -> list[str]:
    _check_template(command_template)
    try:
        rendered = command_template.strip().format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise DecisionBackendError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise DecisionBackendError(
            "Agent command template rendered empty command.",
            transient=False,
        )
    return argv
