"""Shell command execution skill."""

from __future__ import annotations

import asyncio
import shlex
from typing import Any

from opspilot.skills.base import BaseSkill, ParamSpec, SkillCategory, Tool, ToolExecutionError
from opspilot.utils import get_logger, safe_json_dumps

logger = get_logger(__name__)


class ShellSkill(BaseSkill):
    """Shell command execution skill.

    ``run_command`` is flagged dangerous, so the agent loop always asks for
    confirmation before it runs. The blocklist still applies afterwards.

    Example:
        >>> skill = ShellSkill(allowed_commands=["ls", "df", "uptime"])
        >>> output = await skill.run_command({"command": "df -h"})
    """

    id = "skill-shell"
    name = "Shell"
    description = "Run shell commands on the local host"
    icon = "🖥️"
    category = SkillCategory.SERVER

    # Commands that are blocked by default
    BLOCKED_COMMANDS = {
        "rm", "rmdir", "mv", "dd", "mkfs", "fdisk",
        "shutdown", "reboot", "halt", "init",
        "sudo", "su", "chmod", "chown",
        "format", "del", "erase",
    }

    DANGEROUS_PATTERNS = (
        "| rm", "| sudo", "; rm", "; sudo",
        "&& rm", "&& sudo", "$(rm", "$(sudo",
        "`rm", "`sudo", "> /dev/", "| dd",
    )

    def __init__(
        self,
        allowed_commands: list[str] | None = None,
        working_directory: str | None = None,
        timeout_seconds: float = 30,
        max_output_length: int = 10000,
    ):
        """Initialize shell skill.

        Args:
            allowed_commands: Whitelist of allowed commands (None = use blocklist)
            working_directory: Working directory for commands
            timeout_seconds: Command timeout
            max_output_length: Max output characters to return
        """
        self.allowed_commands = allowed_commands
        self.working_directory = working_directory
        self.timeout_seconds = timeout_seconds
        self.max_output_length = max_output_length

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="run_command",
                description="Run a shell command and return its exit code, stdout and stderr.",
                dangerous=True,
                parameters={
                    "command": ParamSpec(description="The shell command to execute", required=True),
                },
                execute=self.run_command,
            ),
        ]

    async def run_command(self, arguments: dict[str, Any]) -> str:
        """Execute a shell command.

        Raises:
            ToolExecutionError: If the command is rejected or times out
        """
        command = arguments.get("command", "")
        if not command:
            raise ToolExecutionError("Command is required")

        validation_error = self._validate_command(command)
        if validation_error:
            raise ToolExecutionError(validation_error)

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.working_directory,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolExecutionError(f"Command timed out after {self.timeout_seconds}s")

        stdout_str = self._truncate(stdout.decode("utf-8", errors="replace"))
        stderr_str = self._truncate(stderr.decode("utf-8", errors="replace"))

        if process.returncode != 0:
            logger.warning(
                "Command returned non-zero exit code",
                extra={"command": command[:50], "exit_code": process.returncode},
            )

        return safe_json_dumps({
            "exit_code": process.returncode,
            "stdout": stdout_str,
            "stderr": stderr_str,
        })

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_output_length:
            return text[:self.max_output_length] + "\n... (output truncated)"
        return text

    def _validate_command(self, command: str) -> str | None:
        """Validate a command against security rules.

        Returns:
            Error message if invalid, None if valid
        """
        try:
            parts = shlex.split(command)
        except ValueError as e:
            return f"Invalid command syntax: {e}"

        if not parts:
            return "Empty command"

        base_command = parts[0].split("/")[-1]

        if self.allowed_commands is not None:
            if base_command not in self.allowed_commands:
                return f"Command '{base_command}' is not in the allowed list"
        elif base_command.lower() in self.BLOCKED_COMMANDS:
            return f"Command '{base_command}' is blocked for safety"

        command_lower = command.lower()
        for pattern in self.DANGEROUS_PATTERNS:
            if pattern in command_lower:
                return f"Command contains dangerous pattern: {pattern}"

        return None
