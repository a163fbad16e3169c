"""
sf_command.py - Salesforce CLI Runner

Spawns the `sf` binary as an argv list (never through a shell) and turns its
`--json` output into Python data. Failures become ExternalRunnerFailure with
the CLI's own error body preserved:

    {"name": "NoOrgFound", "message": "...", "exitCode": 1,
     "context": "...", "stack": "...", "data": {...}, "actions": [...]}

Usage:
    runner = SfCommandRunner()
    payload = await runner.run(["org", "display", "--target-org", "dev"])
    payload["result"]["instanceUrl"]
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import sys
from pathlib import Path
from typing import Any

import orjson

from sfmcp.core.errors import ErrorCode, ExternalRunnerFailure
from sfmcp.foundation.config.logging import get_logger
from sfmcp.foundation.config.settings import get_setting

logger = get_logger("sfmcp.runner")

DEFAULT_MAX_OUTPUT_BYTES = 50 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

SF_NOT_FOUND_MESSAGE = (
    "Salesforce CLI (sf) not found. Please ensure it is installed and accessible. "
    "Visit https://developer.salesforce.com/tools/salesforcecli for installation instructions."
)

# Keys of the CLI's JSON error body that are forwarded as failure context.
_ERROR_CONTEXT_KEYS = ("context", "stack", "data", "actions", "commandName", "warnings", "result")


def _common_sf_paths() -> list[str]:
    home = os.environ.get("HOME", "")
    if sys.platform == "darwin":
        paths = ["/usr/local/bin/sf", "/opt/homebrew/bin/sf", "/usr/bin/sf"]
        if home:
            paths.append(f"{home}/.local/bin/sf")
        return paths
    if sys.platform == "win32":
        local_app_data = os.environ.get("LOCALAPPDATA", "")
        paths = [
            r"C:\Program Files\sf\bin\sf.cmd",
            r"C:\Program Files\sf\bin\sf.exe",
            r"C:\Program Files (x86)\sf\bin\sf.cmd",
            r"C:\Program Files (x86)\sf\bin\sf.exe",
        ]
        if local_app_data:
            paths += [rf"{local_app_data}\sf\bin\sf.cmd", rf"{local_app_data}\sf\bin\sf.exe"]
        return paths
    paths = ["/usr/local/bin/sf", "/usr/bin/sf", "/opt/salesforce/cli/bin/sf"]
    if home:
        paths.append(f"{home}/.local/bin/sf")
    return paths


def discover_sf_path(override: str | None = None) -> str:
    """Locate the sf binary: explicit override, common install paths, then PATH."""
    if override:
        return override
    for candidate in _common_sf_paths():
        if Path(candidate).exists():
            return candidate
    return shutil.which("sf") or "sf"


def _decode_json(raw: bytes) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None


def _is_warning_only(stderr: str) -> bool:
    return not stderr.strip() or "Warning" in stderr


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def failure_from_body(body: dict[str, Any], fallback_code: int | None = None) -> ExternalRunnerFailure:
    """Build an ExternalRunnerFailure from a CLI JSON error body."""
    exit_code = body.get("exitCode", body.get("status", fallback_code))
    context = {k: body[k] for k in _ERROR_CONTEXT_KEYS if body.get(k) not in (None, [], {})}
    return ExternalRunnerFailure(
        message=str(body.get("message") or "Salesforce CLI command failed"),
        name=body.get("name"),
        exit_code=exit_code if isinstance(exit_code, int) else fallback_code,
        context=context,
    )


class SfCommandRunner:
    """
    Async runner for the `sf` CLI.

    Each call is its own subprocess; awaiting it suspends only the calling
    task. stdout is read in chunks; passing `max_output_bytes` kills the
    child and fails the call rather than truncating. A timeout or a
    cancelled caller also kills the child.
    """

    def __init__(
        self,
        sf_path: str | None = None,
        max_output_bytes: int | None = None,
        timeout: float | None = None,
    ):
        self._sf_path_override = sf_path if sf_path is not None else get_setting("runner.sf_path")
        self._sf_path: str | None = None
        self.max_output_bytes = int(
            max_output_bytes
            if max_output_bytes is not None
            else get_setting("runner.max_output_bytes", DEFAULT_MAX_OUTPUT_BYTES)
        )
        configured_timeout = timeout if timeout is not None else get_setting("runner.timeout_seconds")
        self.timeout = float(configured_timeout) if configured_timeout else None

    @property
    def sf_path(self) -> str:
        if self._sf_path is None:
            self._sf_path = discover_sf_path(self._sf_path_override)
            logger.debug("sf binary resolved", path=self._sf_path)
        return self._sf_path

    async def _exec(self, args: list[str], cwd: str | None = None) -> tuple[int, bytes, bytes]:
        argv = [self.sf_path, *args]
        logger.debug("Running sf command", argv=" ".join(argv[1:]))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise ExternalRunnerFailure(
                SF_NOT_FOUND_MESSAGE,
                name="SfCliNotFound",
                code=ErrorCode.EXTERNAL_UNAVAILABLE,
                context={"path": self.sf_path},
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(self._collect(process), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await _terminate(process)
            raise ExternalRunnerFailure(
                f"sf {' '.join(args[:2])} timed out after {self.timeout}s",
                name="SfCommandTimeout",
                context={"args": args},
            ) from e
        except (ExternalRunnerFailure, asyncio.CancelledError):
            await _terminate(process)
            raise

        return process.returncode or 0, stdout, stderr

    async def _collect(self, process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
        stdout, stderr = await asyncio.gather(self._read_capped(process.stdout), process.stderr.read())
        await process.wait()
        return stdout, stderr

    async def _read_capped(self, stream: asyncio.StreamReader) -> bytes:
        buffer = bytearray()
        while chunk := await stream.read(READ_CHUNK_BYTES):
            buffer += chunk
            if len(buffer) > self.max_output_bytes:
                raise ExternalRunnerFailure(
                    f"sf output exceeded {self.max_output_bytes} bytes",
                    name="OutputLimitExceeded",
                    context={"limit": self.max_output_bytes},
                )
        return bytes(buffer)

    async def run(self, args: list[str], cwd: str | None = None) -> dict[str, Any]:
        """Run `sf <args> --json` and return the parsed JSON document."""
        if "--json" not in args:
            args = [*args, "--json"]

        exit_code, stdout, stderr = await self._exec(args, cwd=cwd)
        stderr_text = stderr.decode(errors="replace")
        body = _decode_json(stdout)

        if exit_code != 0:
            if isinstance(body, dict):
                raise failure_from_body(body, fallback_code=exit_code)
            raise ExternalRunnerFailure(
                stderr_text.strip() or f"sf exited with status {exit_code}",
                name="SfCommandFailed",
                exit_code=exit_code,
            )

        if not isinstance(body, dict):
            if not _is_warning_only(stderr_text):
                raise ExternalRunnerFailure(stderr_text.strip(), name="SfCommandFailed", exit_code=0)
            raise ExternalRunnerFailure(
                "Could not parse sf output as JSON",
                name="SfOutputParseError",
                exit_code=0,
                context={"stdout": stdout[:2000].decode(errors="replace")},
            )

        if body.get("status", 0) != 0:
            raise failure_from_body(body, fallback_code=exit_code)

        if stderr_text.strip():
            logger.debug("sf stderr", stderr=stderr_text.strip()[:500])
        return body

    async def run_raw(
        self,
        args: list[str],
        tolerate_nonzero: bool = False,
        cwd: str | None = None,
    ) -> str:
        """Run `sf <args>` and return raw stdout.

        With `tolerate_nonzero`, a non-zero exit that still produced stdout
        is returned as output (scanners exit non-zero when they find
        violations).
        """
        exit_code, stdout, stderr = await self._exec(args, cwd=cwd)
        output = stdout.decode(errors="replace")

        if exit_code != 0:
            if tolerate_nonzero and output.strip():
                logger.debug("sf exited non-zero with output", exit_code=exit_code)
                return output
            body = _decode_json(stdout)
            if isinstance(body, dict):
                raise failure_from_body(body, fallback_code=exit_code)
            raise ExternalRunnerFailure(
                stderr.decode(errors="replace").strip() or f"sf exited with status {exit_code}",
                name="SfCommandFailed",
                exit_code=exit_code,
            )
        return output


__all__ = [
    "DEFAULT_MAX_OUTPUT_BYTES",
    "SF_NOT_FOUND_MESSAGE",
    "SfCommandRunner",
    "discover_sf_path",
    "failure_from_body",
]
