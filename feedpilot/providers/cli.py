# feedpilot/providers/cli.py
import asyncio
import os
from enum import Enum
from typing import List

from ..errors import ProviderError
from ..logging_setup import get_logger
from .base import AIProvider

logger = get_logger("feedpilot.providers.cli")

DEFAULT_CLI_TIMEOUT = 300


class CliKind(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"

    @property
    def base_args(self) -> List[str]:
        return {
            CliKind.CLAUDE: ["-p", "--tools", ""],
            CliKind.GEMINI: ["-p"],
            CliKind.CODEX: ["exec"],
        }[self]

    @property
    def uses_stdin(self) -> bool:
        # codex takes the prompt as an argument
        return self is not CliKind.CODEX


class CliProvider(AIProvider):
    """Runs a locally installed assistant CLI once per prompt."""

    def __init__(self, kind: CliKind, language: str = "English",
                 timeout: float = DEFAULT_CLI_TIMEOUT, executable: str = ""):
        super().__init__(language)
        self.kind = CliKind(kind)
        self.timeout = timeout
        self.executable = executable or self.kind.value
        self.name = f"{self.kind.value}_cli"

    def command(self, prompt: str) -> List[str]:
        cmd = [self.executable, *self.kind.base_args]
        if not self.kind.uses_stdin:
            cmd.append(prompt)
        return cmd

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        cmd = self.command(prompt)
        # Filter CLAUDECODE so a nested claude does not refuse to start
        env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise ProviderError(f"{self.executable} CLI not found on PATH") from e

        stdin = prompt.encode("utf-8") if self.kind.uses_stdin else None
        try:
            out, err = await asyncio.wait_for(proc.communicate(stdin), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ProviderError(f"{self.executable} CLI timed out after {self.timeout}s") from e

        if proc.returncode != 0:
            stderr = err.decode("utf-8", errors="replace")[:500]
            raise ProviderError(f"{self.executable} CLI failed (exit {proc.returncode}): {stderr}")

        text = out.decode("utf-8", errors="replace").strip()
        if not text:
            raise ProviderError(f"{self.executable} CLI returned no output")
        return text
