"""System prompt templates for OpsPilot."""

import platform
from datetime import datetime, timezone


SYSTEM_PROMPT_TEMPLATE = """
You are {agent_name}, an operations assistant that works through tools.

## Runtime
- OS: {os_name} ({arch})
- Current time: {current_time}
{model_info_section}

## Operating Rules
- Use tools to inspect real state instead of guessing; do not just describe what to do
- Call tools one step at a time and read each result before the next call
- Tools marked dangerous run only after the user confirms; state clearly what will happen
- If a tool fails, explain the error and try a different approach instead of repeating the same call
- When the task is complete, reply with a concise summary and no further tool calls
- Never invent tool names; only call the tools listed below

{skills_prompt}

{agent_skills_prompt}

{custom_instructions}
""".strip()


TOOL_RESULTS_TEMPLATE = """
Tool results for round {round}:

{results}

Judge whether the task is complete. If it is, reply to the user with a summary. \
If not, call the next tool.
""".strip()


def build_system_prompt(
    agent_name: str = "OpsPilot",
    skills_prompt: str = "",
    agent_skills_prompt: str = "",
    custom_instructions: str = "",
    model_info: str = "",
) -> str:
    """Build the system prompt for one turn.

    Args:
        agent_name: Name of the agent
        skills_prompt: Rendered listing of enabled skills and tools
        agent_skills_prompt: Rendered SKILL.md bodies
        custom_instructions: Additional instructions from configuration
        model_info: Model name/provider shown in the runtime section

    Returns:
        Complete system prompt
    """
    current_time = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    model_info_section = f"- Model: {model_info}" if model_info else ""

    prompt = SYSTEM_PROMPT_TEMPLATE.format(
        agent_name=agent_name,
        os_name=platform.system() or "unknown",
        arch=platform.machine() or "unknown",
        current_time=current_time,
        model_info_section=model_info_section,
        skills_prompt=skills_prompt or "No tools are currently enabled.",
        agent_skills_prompt=agent_skills_prompt,
        custom_instructions=custom_instructions,
    )

    # Collapse the gaps left by empty sections
    while "\n\n\n" in prompt:
        prompt = prompt.replace("\n\n\n", "\n\n")
    return prompt.strip()


def build_tool_results_message(round_number: int, results: list[tuple[str, str, bool]]) -> str:
    """Render one round of tool results as a user-role message.

    Args:
        round_number: 1-based round number
        results: ``(tool_name, result_text, success)`` per executed call
    """
    blocks = []
    for name, text, success in results:
        status = "ok" if success else "failed"
        blocks.append(f"[{name}] ({status})\n{text}")

    return TOOL_RESULTS_TEMPLATE.format(round=round_number, results="\n\n".join(blocks))
