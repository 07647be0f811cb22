"""Subprocess-based LLM client for CLI agents returning JSON on stdout."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from knowledge_inbox.capabilities.stdout_json import recover_json_object
from knowledge_inbox.errors import CapabilityError, SchemaValidationError

logger = logging.getLogger(__name__)

ECHO_AGENT_MODULE = "knowledge_inbox.capabilities.echo_agent"
TIMEOUT_EXIT_CODE = 124
_POLL_INTERVAL_SECONDS = 0.05

_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "overloaded",
)


@dataclass(slots=True)
class LlmRunResult:
    """Raw outcome of one CLI agent invocation."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str


class CliLlmClient:
    """Render a command template with the prompt, run it, and parse stdout as JSON.

    Supported placeholders: ``{prompt}``, ``{prompt_file}`` and ``{model}``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        model: str,
        timeout_seconds: int,
        workdir: Path,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.command_template = command_template
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.workdir = workdir
        self._shutdown_requested = shutdown_requested
        self._warn_echo_agent = ECHO_AGENT_MODULE in command_template

    def complete_json(self, prompt: str, *, task: str) -> dict[str, Any]:
        """Run the agent and return the JSON object it printed."""

        if self._warn_echo_agent:
            self._warn_echo_agent = False
            logger.warning(
                "LLM command is the bundled echo agent, so %s output is placeholder text. "
                "Set KNOWLEDGE_INBOX_LLM_COMMAND_TEMPLATE to a real LLM CLI.",
                task,
            )
        call_dir = self.workdir / f"{task}-{uuid4().hex[:12]}"
        call_dir.mkdir(parents=True, exist_ok=True)
        result = self.run(prompt, call_dir=call_dir)

        if result.timed_out:
            raise CapabilityError(
                f"LLM command timed out after {self.timeout_seconds}s ({task}).",
                transient=True,
            )
        if result.exit_code != 0:
            summary = _summarize_output(result.stderr or result.stdout)
            logger.warning(
                "LLM command failed for %s with exit code %d; artifacts kept in %s",
                task,
                result.exit_code,
                call_dir,
            )
            raise CapabilityError(
                f"LLM command exited with code {result.exit_code} ({task}): {summary}",
                transient=is_transient_output(stdout=result.stdout, stderr=result.stderr),
            )

        payload = recover_json_object(result.stdout)
        if payload is None:
            logger.warning("LLM output for %s is not JSON; artifacts kept in %s", task, call_dir)
            raise SchemaValidationError(
                f"LLM output is not a JSON object ({task}).",
                raw_payload=result.stdout,
            )
        shutil.rmtree(call_dir, ignore_errors=True)
        return payload

    def run(self, prompt: str, *, call_dir: Path) -> LlmRunResult:
        prompt_file = call_dir / "prompt.txt"
        prompt_file.write_text(prompt, "utf-8")
        run_args = build_run_args(
            command_template=self.command_template,
            model=self.model,
            prompt=prompt,
            prompt_file=prompt_file,
        )

        env = os.environ.copy()
        env["KNOWLEDGE_INBOX_LLM_MODEL"] = self.model
        stdout_path = call_dir / "stdout.txt"
        stderr_path = call_dir / "stderr.txt"
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = self._wait(
                    subprocess.Popen(  # noqa: S603
                        run_args,
                        env=env,
                        stdout=stdout_handle,
                        stderr=stderr_handle,
                        text=True,
                    ),
                )
        except FileNotFoundError as error:
            raise CapabilityError(
                f"LLM command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise CapabilityError(f"LLM command failed to start: {error}", transient=True) from error

        return LlmRunResult(
            exit_code=exit_code,
            timed_out=timed_out,
            stdout=stdout_path.read_text("utf-8"),
            stderr=stderr_path.read_text("utf-8"),
        )

    def _wait(self, process: subprocess.Popen[str]) -> tuple[int, bool]:
        started = time.monotonic()
        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if time.monotonic() - started >= self.timeout_seconds:
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True
            if self._shutdown_requested is not None and self._shutdown_requested():
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True
            time.sleep(_POLL_INTERVAL_SECONDS)


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise CapabilityError("LLM command template is empty.", transient=False)
    if "{prompt" not in stripped:
        raise CapabilityError(
            "LLM command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise CapabilityError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise CapabilityError("LLM command template rendered empty command.", transient=False)
    return argv


def is_transient_output(*, stdout: str, stderr: str) -> bool:
    haystack = f"{stderr}\n{stdout}".lower()
    return any(pattern in haystack for pattern in _TRANSIENT_PATTERNS)


def _summarize_output(text: str, limit: int = 300) -> str:
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact or "<no output>"
    return compact[: limit - 3] + "..."


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
