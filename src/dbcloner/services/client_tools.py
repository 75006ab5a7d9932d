"""Client program detection for dbcloner."""

import re
import subprocess
from typing import Dict, Optional, Sequence

from packaging import version

from dbcloner.errors import ClonerError
from dbcloner.errors_catalog import actionable_error

VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


class ClientToolsService:
    """Finds the engine client programs and checks their versions once per run."""

    def __init__(self, logger, console, subprocess_module=subprocess):
        self.logger = logger
        self.console = console
        self.subprocess = subprocess_module
        self._versions: Dict[str, str] = {}
        self._resolved: Dict[str, str] = {}

    def _version_output(self, program: str) -> str:
        if program not in self._versions:
            result = self.subprocess.run(
                [program, "--version"], check=True, capture_output=True, text=True
            )
            self._versions[program] = f"{result.stdout or ''}\n{result.stderr or ''}".strip()
        return self._versions[program]

    def is_available(self, program: str) -> bool:
        try:
            self._version_output(program)
            return True
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            return False

    def resolve(self, providers: Sequence[str], engine: str) -> str:
        """Returns the first available program of ``providers``, cached per ranking."""
        key = ",".join(providers)
        if key in self._resolved:
            return self._resolved[key]

        for program in providers:
            if self.is_available(program):
                if program != providers[0]:
                    self.logger.warning(
                        "%s not found, falling back to %s.", providers[0], program
                    )
                self.logger.debug("Using %s client: %s", engine, program)
                self._resolved[key] = program
                return program

        raise ClonerError(
            actionable_error("client_not_found", program=" or ".join(providers), engine=engine)
        )

    def require(self, programs: Sequence[str], engine: str):
        self.console.print(f"[blue]Checking {engine} client programs: {', '.join(programs)}[/blue]")
        for program in programs:
            self.resolve([program], engine)

    def get_version(self, program: str) -> Optional[version.Version]:
        try:
            output = self._version_output(program)
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            return None

        match = VERSION_RE.search(output)
        if not match:
            return None
        try:
            return version.parse(match.group(1))
        except version.InvalidVersion:
            return None

    def ensure_min_version(self, program: str, minimum: str, engine: str):
        found = self.get_version(program)
        if found is None:
            self.logger.warning("Could not determine %s version; assuming it is recent enough.", program)
            return
        if found < version.parse(minimum):
            raise ClonerError(
                actionable_error(
                    "client_too_old",
                    program=program,
                    found=str(found),
                    required=minimum,
                    engine=engine,
                )
            )
