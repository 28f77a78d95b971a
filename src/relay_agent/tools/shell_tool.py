"""
Shell Command Tool - runs bash commands with a hard timeout.

A command that does not finish in time is killed and reported as timed out
instead of blocking the turn.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from .base import Tool, ToolParameter, ToolResult

logger = structlog.get_logger()

INTERACTIVE_COMMANDS = ("vim", "vi", "nano", "emacs", "top", "htop", "less", "more")


@dataclass
class ShellConfig:
    """Configuration for shell command execution."""

    timeout_seconds: int = 30
    max_output_chars: int = 50000
    workspace_dir: Optional[str] = None


class ShellExecutor:
    """Executes shell commands."""

    def __init__(self, config: Optional[ShellConfig] = None):
        self.config = config or ShellConfig()
        self.workspace = Path(self.config.workspace_dir or os.getcwd()).expanduser()

    def check_command(self, command: str) -> str | None:
        """Return a refusal reason for commands that would wait on a terminal."""
        trimmed = command.strip()
        if not trimmed:
            return "empty command"
        for name in INTERACTIVE_COMMANDS:
            if trimmed == name or trimmed.startswith(name + " "):
                return (
                    f"interactive command '{name}' not supported - use file_write/file_edit "
                    "for editing, or run the command manually"
                )
        if "sudo " in trimmed and "sudo -S" not in trimmed and "NOPASSWD" not in trimmed:
            return (
                "sudo requires password - use the 'interactive' tool to collect it, then use "
                "'echo $password | sudo -S command'"
            )
        return None

    async def execute(self, command: str) -> tuple[int, str, bool]:
        """
        Execute a shell command.

        Returns:
            Tuple of (return_code, combined_output, timed_out)
        """
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(self.workspace),
        )

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command timed out", command=command, timeout=self.config.timeout_seconds)
            return -1, "", True

        output = stdout.decode("utf-8", errors="replace")
        if len(output) > self.config.max_output_chars:
            output = output[:self.config.max_output_chars] + "\n\n... (truncated)"
        return process.returncode, output, False


def create_shell_tools(timeout_seconds: int = 30, workspace_dir: Optional[str] = None) -> list[Tool]:
    """Create shell-related tools."""
    executor = ShellExecutor(ShellConfig(timeout_seconds=timeout_seconds, workspace_dir=workspace_dir))

    async def bash_handler(command: str) -> ToolResult:
        refusal = executor.check_command(command)
        if refusal:
            return ToolResult(success=False, error=refusal)

        return_code, output, timed_out = await executor.execute(command)
        if timed_out:
            return ToolResult(
                success=False,
                error=(
                    f"command timed out after {executor.config.timeout_seconds} seconds "
                    "- may be waiting for input"
                ),
                timed_out=True,
            )
        if return_code != 0:
            return ToolResult(success=True, output=f"[exit {return_code}]\n{output}")
        return ToolResult(success=True, output=output or "(no output)")

    bash = Tool(
        name="bash",
        description=(
            "Execute a bash command and return its output. For commands requiring "
            "passwords (sudo, ssh), use the 'interactive' tool to collect the password "
            "first, then use 'sudo -S' or 'sshpass'. For interactive editors use "
            f"file_write/file_edit instead. Commands timeout after {timeout_seconds} seconds."
        ),
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="Bash command to execute",
                required=True,
            ),
        ],
        handler=bash_handler,
    )

    return [bash]
