"""User-defined skills backed by Python scripts.

A custom tool is declared with a ``script``: Python source that reads the
``params`` mapping and assigns ``result``. Scripts never run inside the
agent process. Each call starts a fresh isolated interpreter
(``python -I``) with an empty environment in a throwaway working directory;
the parameters travel as JSON on stdin and the result comes back on stdout.

Every script passes through the security scanner before the skill is
built, and any critical finding refuses activation unless the caller opts
out.
"""

from __future__ import annotations

import asyncio
import json
import sys
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from opspilot.security.scanner import ScanSummary, scan_script
from opspilot.skills.base import ParamSpec, Skill, SkillCategory, Tool, ToolExecutionError, ToolFunction
from opspilot.utils import get_logger

logger = get_logger(__name__)

_SCRIPT_HOST = r"""
import json
import sys

payload = json.load(sys.stdin)
scope = {"params": payload["params"], "result": None}
exec(compile(payload["script"], "<custom-skill>", "exec"), scope)
result = scope.get("result")
if isinstance(result, str):
    sys.stdout.write(result)
else:
    sys.stdout.write(json.dumps(result, indent=2, ensure_ascii=False, default=str))
"""


class SkillRejectedError(Exception):
    """A custom skill was refused because its script failed the scan."""

    def __init__(self, skill_id: str, tool_name: str, summary: ScanSummary):
        rules = ", ".join(f.rule_id for f in summary.findings if f.severity.value == "critical")
        super().__init__(
            f"Custom skill '{skill_id}' rejected: tool '{tool_name}' has "
            f"{summary.critical} critical finding(s) ({rules})"
        )
        self.skill_id = skill_id
        self.tool_name = tool_name
        self.summary = summary


class CustomToolDefinition(BaseModel):
    name: str
    description: str = ""
    dangerous: bool = False
    parameters: dict[str, ParamSpec] = Field(default_factory=dict)
    script: str


class CustomSkillDefinition(BaseModel):
    """Declarative form of a custom skill, as stored on disk."""

    id: str
    name: str
    description: str = ""
    icon: str = "🧩"
    category: SkillCategory = SkillCategory.CUSTOM
    version: str = "1.0.0"
    author: str = ""
    tools: list[CustomToolDefinition] = Field(default_factory=list)


class ScriptRunner:
    """Run custom tool scripts in an isolated interpreter process."""

    def __init__(
        self,
        timeout_seconds: float = 30,
        max_output_length: int = 10000,
        python_executable: str | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_output_length = max_output_length
        self.python_executable = python_executable or sys.executable

    def bind(self, script: str) -> ToolFunction:
        """Return a tool function that runs ``script`` with the call's params."""

        async def execute(params: dict[str, Any]) -> str:
            return await self.run(script, params)

        return execute

    async def run(self, script: str, params: dict[str, Any]) -> str:
        payload = json.dumps({"script": script, "params": params}, ensure_ascii=False)

        with tempfile.TemporaryDirectory(prefix="opspilot-skill-") as workdir:
            process = await asyncio.create_subprocess_exec(
                self.python_executable, "-I", "-c", _SCRIPT_HOST,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env={"PYTHONIOENCODING": "utf-8"},
            )

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(payload.encode("utf-8")),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise ToolExecutionError(f"Script timed out after {self.timeout_seconds}s")

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            error_lines = stderr.decode("utf-8", errors="replace").strip().splitlines()
            reason = error_lines[-1] if error_lines else f"exit code {process.returncode}"
            raise ToolExecutionError(f"Custom skill script failed: {reason}")

        if len(output) > self.max_output_length:
            output = output[:self.max_output_length] + "\n... (output truncated)"
        return output


def scan_definition(definition: CustomSkillDefinition) -> dict[str, ScanSummary]:
    """Scan every tool script of a definition, keyed by tool name."""
    return {tool.name: scan_script(tool.script) for tool in definition.tools}


def build_custom_skill(
    definition: CustomSkillDefinition,
    runner: ScriptRunner,
    reject_on_critical: bool = True,
) -> Skill:
    """Turn a declarative definition into an executable skill.

    Raises:
        SkillRejectedError: If a script has critical findings and
            ``reject_on_critical`` is set
    """
    for tool_name, summary in scan_definition(definition).items():
        if summary.has_critical:
            if reject_on_critical:
                raise SkillRejectedError(definition.id, tool_name, summary)
            logger.warning(
                "Activating custom skill despite critical findings",
                extra={"skill_id": definition.id, "tool": tool_name},
            )

    return Skill(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        icon=definition.icon,
        category=definition.category,
        builtin=False,
        enabled=True,
        version=definition.version,
        author=definition.author,
        tools=[
            Tool(
                name=t.name,
                description=t.description,
                dangerous=t.dangerous,
                parameters=t.parameters,
                execute=runner.bind(t.script),
            )
            for t in definition.tools
        ],
    )


def load_custom_definitions(path: str | Path) -> list[CustomSkillDefinition]:
    """Read custom skill definitions from a YAML list.

    Missing files yield an empty list.
    """
    path = Path(path)
    if not path.exists():
        return []

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []

    if not isinstance(raw, list):
        raise ValueError(f"Custom skill file {path} must contain a list")

    return [CustomSkillDefinition(**item) for item in raw]


def save_custom_definitions(path: str | Path, definitions: list[CustomSkillDefinition]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            [d.model_dump(mode="json") for d in definitions],
            f,
            allow_unicode=True,
            sort_keys=False,
        )
