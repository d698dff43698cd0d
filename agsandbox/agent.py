"""Per-agent launch profiles: command, arguments, environment and boot setup."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from .cli import Agent

HOST_SERVICE_PROMPT_HINT = (
    "Sandbox: use host.containers.internal (localhost is container-local)."
)

_PI_GUARD_EXTENSION = "/home/dev/.pi/agent/extensions/guard.ts"
_CLAUDE_GUARD_HOOK = "/home/dev/.config/ags/hooks/guard.sh"
_CLAUDE_GUARD_PLUGIN_DIR = "/home/dev/.config/ags/hooks"
_OPENCODE_BOOT_DIRS = (
    "/home/dev/.local/share/opencode",
    "/home/dev/.cache/opencode",
)


@dataclass
class AgentProfile:
    """How to launch one agent inside the container."""

    command: str
    command_args: list[str] = field(default_factory=list)
    extra_env: list[tuple[str, str]] = field(default_factory=list)
    # Container directories to create in the entrypoint script.
    extra_boot_dirs: list[str] = field(default_factory=list)
    # Shell commands run in the entrypoint before exec.
    entrypoint_setup: str = ""
    # CLI flag for browser skill injection (e.g. "--skill" for pi).
    browser_skill_flag: Optional[str] = None
    browser_skill_path: str = ""


def toml_basic_string(value: str) -> str:
    """Quote a value as a TOML basic string."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def profile_for(agent: Agent, config: Any) -> AgentProfile:
    """Build the launch profile for an agent with guard integrations enabled."""
    return profile_for_with_guards(agent, config, True)


def profile_for_with_guards(
    agent: Agent, config: Any, guard_enabled: bool
) -> AgentProfile:
    """Build the launch profile for an agent, with guards on or off for this run.

    ``config`` needs a ``browser.pi_skill_path`` attribute.
    """
    if agent is Agent.PI:
        return _pi_profile(config, guard_enabled)
    if agent is Agent.CLAUDE:
        return _claude_profile(guard_enabled)
    if agent is Agent.CODEX:
        return AgentProfile(
            command="codex",
            command_args=[
                "-c",
                f"developer_instructions={toml_basic_string(HOST_SERVICE_PROMPT_HINT)}",
            ],
        )
    if agent is Agent.GEMINI:
        return AgentProfile(command="gemini")
    if agent is Agent.OPENCODE:
        return AgentProfile(command="opencode", extra_boot_dirs=list(_OPENCODE_BOOT_DIRS))
    if agent is Agent.SHELL:
        return AgentProfile(command="bash", extra_boot_dirs=list(_OPENCODE_BOOT_DIRS))
    raise ValueError(f"unknown agent: {agent!r}")


def _pi_profile(config: Any, guard_enabled: bool) -> AgentProfile:
    args: list[str] = []
    if guard_enabled:
        args += ["-e", _PI_GUARD_EXTENSION]
    args += ["--append-system-prompt", HOST_SERVICE_PROMPT_HINT]
    return AgentProfile(
        command="pi",
        command_args=args,
        browser_skill_flag="--skill",
        browser_skill_path=config.browser.pi_skill_path,
    )


def _claude_settings_json() -> str:
    settings = {
        "sandbox": {"enabled": False},
        "hooks": {
            "PreToolUse": [
                {
                    "matcher": "Bash|Read|Write|Edit|Grep|Glob",
                    "hooks": [
                        {
                            "type": "command",
                            "command": _CLAUDE_GUARD_HOOK,
                            "timeout": 5,
                        }
                    ],
                }
            ]
        },
    }
    return json.dumps(settings, separators=(",", ":"))


def _claude_profile(guard_enabled: bool) -> AgentProfile:
    args = ["--dangerously-skip-permissions"]
    if guard_enabled:
        args += [
            "--settings",
            _claude_settings_json(),
            "--plugin-dir",
            _CLAUDE_GUARD_PLUGIN_DIR,
        ]
    args += ["--append-system-prompt", HOST_SERVICE_PROMPT_HINT]
    return AgentProfile(command="claude", command_args=args)