"""Subprocess execution service for dbcloner."""

import os
import subprocess
from typing import Dict, Iterable, List, Optional, Set

from dbcloner.errors import ClonerError

MASK = "******"


class CommandRunner:
    """Runs external client programs with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        self._secrets: Set[str] = set()

    def register_secret(self, *values: Optional[str]):
        for value in values:
            if value:
                self._secrets.add(value)

    def mask(self, text: str) -> str:
        # Longest first so a secret containing another one is masked whole.
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, MASK)
        return text

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        secrets: Optional[Iterable[str]] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        self.register_secret(*(secrets or ()))
        cmd_str = self.mask(" ".join(cmd))
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        process_env = None
        if env:
            process_env = os.environ.copy()
            process_env.update(env)

        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                env=process_env,
                input=input_text,
            )
        except FileNotFoundError as exc:
            raise ClonerError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ClonerError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except Exception as exc:
            raise ClonerError(f"Failed to execute command: {cmd_str}. {self.mask(str(exc))}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", self.mask(result.stdout.strip()))

        if result.returncode == 0:
            return result

        stderr = self.mask((result.stderr or "").strip()) if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise ClonerError(message)

        self.logger.debug(message)
        return result
