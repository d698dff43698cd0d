"""Command-line argument parsing for the sandbox launcher."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union


class CliErrorKind(enum.Enum):
    HELP_REQUESTED = "help_requested"
    MISSING_AGENT = "missing_agent"
    MISSING_AGENT_VALUE = "missing_agent_value"
    MISSING_CONFIG_VALUE = "missing_config_value"
    MISSING_SHELL_VALUE = "missing_shell_value"
    MISSING_ALIAS_MODE_VALUE = "missing_alias_mode_value"
    MISSING_MOUNT_PATH_VALUE = "missing_mount_path_value"
    INVALID_AGENT = "invalid_agent"
    INVALID_SHELL = "invalid_shell"
    INVALID_ALIAS_MODE = "invalid_alias_mode"
    UNEXPECTED_FLAG = "unexpected_flag"
    UNEXPECTED_POSITIONAL = "unexpected_positional"


_ERROR_MESSAGES = {
    CliErrorKind.HELP_REQUESTED: "help requested",
    CliErrorKind.MISSING_AGENT: (
        "missing required argument: --agent <pi|claude|codex|gemini|opencode|shell>"
    ),
    CliErrorKind.MISSING_AGENT_VALUE: "missing value for --agent",
    CliErrorKind.MISSING_CONFIG_VALUE: "missing value for --config",
    CliErrorKind.MISSING_SHELL_VALUE: "missing value for --shell",
    CliErrorKind.MISSING_ALIAS_MODE_VALUE: "missing value for --mode",
    CliErrorKind.MISSING_MOUNT_PATH_VALUE: "missing value for --add-dir / -d",
    CliErrorKind.INVALID_AGENT: "invalid agent '{value}'",
    CliErrorKind.INVALID_SHELL: "invalid shell '{value}' (expected fish|zsh|bash)",
    CliErrorKind.INVALID_ALIAS_MODE: (
        "invalid mode '{value}' (expected wrappers|aliases|both)"
    ),
    CliErrorKind.UNEXPECTED_FLAG: "unexpected flag '{value}'",
    CliErrorKind.UNEXPECTED_POSITIONAL: (
        "unexpected positional argument '{value}' (use '--' before passthrough args)"
    ),
}


class CliError(Exception):
    """Raised when command-line arguments cannot be parsed."""

    def __init__(self, kind: CliErrorKind, value: Optional[str] = None) -> None:
        self.kind = kind
        self.value = value
        super().__init__(_ERROR_MESSAGES[kind].format(value=value))


class Agent(enum.Enum):
    PI = "pi"
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    OPENCODE = "opencode"
    SHELL = "shell"

    @classmethod
    def parse(cls, value: str) -> "Agent":
        try:
            return cls(value)
        except ValueError:
            raise CliError(CliErrorKind.INVALID_AGENT, value) from None

    def __str__(self) -> str:
        return self.value


class AliasMode(enum.Enum):
    WRAPPERS = "wrappers"
    ALIASES = "aliases"
    BOTH = "both"

    @classmethod
    def parse(cls, value: str) -> "AliasMode":
        try:
            return cls(value)
        except ValueError:
            raise CliError(CliErrorKind.INVALID_ALIAS_MODE, value) from None


class Shell(enum.Enum):
    FISH = "fish"
    ZSH = "zsh"
    BASH = "bash"

    @classmethod
    def parse(cls, value: str) -> "Shell":
        try:
            return cls(value)
        except ValueError:
            raise CliError(CliErrorKind.INVALID_SHELL, value) from None


@dataclass
class RunOptions:
    """Options for running an agent inside the sandbox."""

    agent: Agent
    browser: bool = False
    tmux: bool = False
    psp: bool = False
    psp_keep: bool = False
    yolo: bool = False
    config_path: Optional[Path] = None
    add_dirs: list[Path] = field(default_factory=list)
    passthrough_args: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InstallOptions:
    link_self: bool = False
    force: bool = False
    add_agent_mounts: bool = False


@dataclass(frozen=True)
class CreateAliasesOptions:
    shell: Optional[Shell] = None
    mode: AliasMode = AliasMode.WRAPPERS
    force: bool = False


@dataclass(frozen=True)
class CompletionsOptions:
    shell: Shell


class SubCommandKind(enum.Enum):
    SETUP = "setup"
    DOCTOR = "doctor"
    UPDATE = "update"
    UPDATE_AGENTS = "update-agents"
    INSTALL = "install"
    UNINSTALL = "uninstall"
    CREATE_ALIASES = "create-aliases"
    COMPLETIONS = "completions"


SubCommandOptions = Union[InstallOptions, CreateAliasesOptions, CompletionsOptions]


@dataclass(frozen=True)
class SubCommand:
    """A non-run subcommand with its options, if it takes any."""

    kind: SubCommandKind
    options: Optional[SubCommandOptions] = None


Command = Union[RunOptions, SubCommand]

_HELP_FLAGS = ("-h", "--help")


def _inline_value(arg: str, prefix: str, missing: CliErrorKind) -> Optional[str]:
    """Return the value of a ``--flag=value`` argument, or None if it does not match."""
    if not arg.startswith(prefix):
        return None
    value = arg[len(prefix):]
    if not value:
        raise CliError(missing)
    return value


def _next_value(it: Iterator[str], missing: CliErrorKind) -> str:
    value = next(it, None)
    if value is None:
        raise CliError(missing)
    return value


def _reject(arg: str) -> CliError:
    if arg.startswith("-"):
        return CliError(CliErrorKind.UNEXPECTED_FLAG, arg)
    return CliError(CliErrorKind.UNEXPECTED_POSITIONAL, arg)


def _parse_run_arg(arg: str, it: Iterator[str], opts: dict) -> None:
    if arg in _HELP_FLAGS:
        raise CliError(CliErrorKind.HELP_REQUESTED)

    if arg == "--agent":
        opts["agent"] = Agent.parse(_next_value(it, CliErrorKind.MISSING_AGENT_VALUE))
        return
    value = _inline_value(arg, "--agent=", CliErrorKind.MISSING_AGENT_VALUE)
    if value is not None:
        opts["agent"] = Agent.parse(value)
        return

    flags = {
        "--browser": "browser",
        "--tmux": "tmux",
        "--psp": "psp",
        "--psp-keep": "psp_keep",
        "--yolo": "yolo",
    }
    if arg in flags:
        opts[flags[arg]] = True
        return

    if arg == "--config":
        opts["config_path"] = Path(_next_value(it, CliErrorKind.MISSING_CONFIG_VALUE))
        return
    value = _inline_value(arg, "--config=", CliErrorKind.MISSING_CONFIG_VALUE)
    if value is not None:
        opts["config_path"] = Path(value)
        return

    if arg in ("--add-dir", "-d"):
        opts["add_dirs"].append(
            Path(_next_value(it, CliErrorKind.MISSING_MOUNT_PATH_VALUE))
        )
        return
    value = _inline_value(arg, "--add-dir=", CliErrorKind.MISSING_MOUNT_PATH_VALUE)
    if value is not None:
        opts["add_dirs"].append(Path(value))
        return

    raise _reject(arg)


def _parse_install_args(it: Iterator[str]) -> InstallOptions:
    flags = {"link_self": False, "force": False, "add_agent_mounts": False}
    names = {
        "--link-self": "link_self",
        "--force": "force",
        "--add-agent-mounts": "add_agent_mounts",
    }
    for arg in it:
        if arg in _HELP_FLAGS:
            raise CliError(CliErrorKind.HELP_REQUESTED)
        if arg in names:
            flags[names[arg]] = True
            continue
        raise _reject(arg)
    return InstallOptions(**flags)


def _parse_create_aliases_args(it: Iterator[str]) -> CreateAliasesOptions:
    shell: Optional[Shell] = None
    mode = AliasMode.WRAPPERS
    force = False

    for arg in it:
        if arg in _HELP_FLAGS:
            raise CliError(CliErrorKind.HELP_REQUESTED)
        if arg == "--force":
            force = True
            continue
        if arg == "--shell":
            shell = Shell.parse(_next_value(it, CliErrorKind.MISSING_SHELL_VALUE))
            continue
        value = _inline_value(arg, "--shell=", CliErrorKind.MISSING_SHELL_VALUE)
        if value is not None:
            shell = Shell.parse(value)
            continue
        if arg == "--mode":
            mode = AliasMode.parse(
                _next_value(it, CliErrorKind.MISSING_ALIAS_MODE_VALUE)
            )
            continue
        value = _inline_value(arg, "--mode=", CliErrorKind.MISSING_ALIAS_MODE_VALUE)
        if value is not None:
            mode = AliasMode.parse(value)
            continue
        raise _reject(arg)

    return CreateAliasesOptions(shell=shell, mode=mode, force=force)


def _parse_completions_args(it: Iterator[str]) -> CompletionsOptions:
    shell: Optional[Shell] = None

    for arg in it:
        if arg in _HELP_FLAGS:
            raise CliError(CliErrorKind.HELP_REQUESTED)
        if arg == "--shell":
            shell = Shell.parse(_next_value(it, CliErrorKind.MISSING_SHELL_VALUE))
            continue
        value = _inline_value(arg, "--shell=", CliErrorKind.MISSING_SHELL_VALUE)
        if value is not None:
            shell = Shell.parse(value)
            continue
        raise _reject(arg)

    if shell is None:
        raise CliError(CliErrorKind.MISSING_SHELL_VALUE)
    return CompletionsOptions(shell=shell)


_SIMPLE_SUBCOMMANDS = {
    "setup": SubCommandKind.SETUP,
    "doctor": SubCommandKind.DOCTOR,
    "update": SubCommandKind.UPDATE,
    "update-agents": SubCommandKind.UPDATE_AGENTS,
    "uninstall": SubCommandKind.UNINSTALL,
}


def parse_args(args: Iterable[str]) -> Command:
    """Parse a full argument vector (program name first) into a command.

    Returns a :class:`RunOptions` for agent runs or a :class:`SubCommand`.
    Raises :class:`CliError` on invalid input or when help is requested.
    """
    it = iter(args)
    next(it, None)  # program name

    first = next(it, None)
    if first is None:
        raise CliError(CliErrorKind.MISSING_AGENT)

    if first in _HELP_FLAGS:
        raise CliError(CliErrorKind.HELP_REQUESTED)
    if first in _SIMPLE_SUBCOMMANDS:
        return SubCommand(_SIMPLE_SUBCOMMANDS[first])
    if first == "install":
        return SubCommand(SubCommandKind.INSTALL, _parse_install_args(it))
    if first == "create-aliases":
        return SubCommand(
            SubCommandKind.CREATE_ALIASES, _parse_create_aliases_args(it)
        )
    if first == "completions":
        return SubCommand(SubCommandKind.COMPLETIONS, _parse_completions_args(it))

    opts: dict = {"agent": None, "add_dirs": []}
    passthrough: list[str] = []

    if first == "--":
        passthrough.extend(it)
    else:
        _parse_run_arg(first, it, opts)
        for arg in it:
            if arg == "--":
                passthrough.extend(it)
                break
            _parse_run_arg(arg, it, opts)

    if opts["agent"] is None:
        raise CliError(CliErrorKind.MISSING_AGENT)

    return RunOptions(passthrough_args=passthrough, **opts)


_HELP_TEXT = """\
Usage: ags [command] --agent <pi|claude|codex|gemini|opencode|shell> [flags] -- [args...]

Commands:
  setup          Generate SSH keys and configure secrets
  doctor         Run health checks on sandbox configuration
  update         Rebuild container image and refresh bundled br/bv/dcg
  update-agents  Install/update agents in persistent volumes
  install         Install config/assets (optional self-link)
  uninstall       Reserved (currently no-op)
  create-aliases  Create managed wrapper scripts and/or shell aliases
  completions     Print shell completion script to stdout

run flags:
  --browser         Start browser sidecar and browser skill wiring
  --tmux            Start the agent inside tmux in the sandbox
  --psp             Enable podman-socket-proxy for Docker/Testcontainers flows
  --psp-keep        Keep PSP-created containers after session exit
  --yolo            Disable AGS Pi/Claude guard integrations for this run
  --config <path>   Use an alternate AGS config file
  --add-dir, -d     Add an extra host directory mount for this run

install flags:
  --link-self        Link current ags executable to ~/.local/bin/ags
  --force            Replace existing ~/.local/bin/ags when used with --link-self
  --add-agent-mounts Append default [[agent_mount]] entries to ~/.config/ags/config.toml

create-aliases flags:
  --shell <name>    Target shell for alias blocks (fish|zsh|bash; autodetect if omitted)
  --mode <kind>     wrappers|aliases|both (default: wrappers)
  --force           Replace existing non-managed targets

completions flags:
  --shell <name>    Shell to generate completion script for (fish|zsh|bash)

Run flags:
  --agent <name>    Agent to run (required), or 'shell' for interactive bash
  --browser         Enable browser sidecar
  --tmux            Launch the agent inside a tmux session (opt-in)
  --psp             Enable podman-socket-proxy mode (auto-starts psp sidecar)
  --psp-keep        Keep PSP-managed containers on exit (debug mode)
  --config <path>   Override config file path
  --add-dir, -d <path>  Add an extra same-path directory mount for this run (repeatable)
"""


def help_text() -> str:
    """Return the usage text."""
    return _HELP_TEXT