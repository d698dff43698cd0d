# agsandbox

Building blocks for running coding agents (pi, claude, codex, gemini,
opencode, or a plain bash shell) inside a container sandbox:

- **Command-line parsing** (`agsandbox.cli`): `parse_args` understands the
  run flags (`--agent`, `--browser`, `--tmux`, `--psp`, `--psp-keep`,
  `--yolo`, `--config`, `--add-dir`/`-d`, and `--` before passthrough
  arguments) and the subcommands `setup`, `doctor`, `update`,
  `update-agents`, `install`, `uninstall`, `create-aliases` and
  `completions`. Bad input raises `CliError`; `help_text()` returns the
  usage text.
- **Agent profiles** (`agsandbox.agent`): `profile_for` and
  `profile_for_with_guards` return an `AgentProfile` with the command,
  arguments, boot directories and browser-skill wiring for each agent,
  with the guard integrations switched on or off.
- **Auth proxy** (`agsandbox.host`, `agsandbox.protocol`): a Unix-socket
  service on the host that lets a tool inside the container ask for a URL
  to be opened in the host browser, prompts the user, and relays a
  localhost OAuth callback back into the container. Messages are
  newline-delimited JSON.
- **Browser sidecar** (`agsandbox.browser`): `start_if_needed` starts a
  browser with a remote-debugging port (or reuses one already listening)
  and gives the `socat` command that forwards the port into the container.

## Installing

The package has no runtime dependencies beyond the standard library and
supports Python 3.10 and later. Install it with your usual tool; the `test`
extra pulls in pytest.

## Parsing a command line

```python
from agsandbox.cli import Agent, CliError, RunOptions, help_text, parse_args

try:
    command = parse_args(["ags", "--agent", "claude", "--tmux", "--", "--resume"])
except CliError as err:
    print(err)
    print(help_text())
else:
    assert isinstance(command, RunOptions)
    print(command.agent is Agent.CLAUDE, command.tmux, command.passthrough_args)
```

The first element is the program name and is ignored, as with `sys.argv`.
A run returns `RunOptions`; a subcommand returns a `SubCommand` whose
`kind` is a `SubCommandKind` and whose `options` is an `InstallOptions`,
`CreateAliasesOptions` or `CompletionsOptions` where the subcommand takes
options. `CliError.kind` is a `CliErrorKind`; `-h`/`--help` raises
`CliError` with `CliErrorKind.HELP_REQUESTED`.

## Agent profiles

```python
from types import SimpleNamespace

from agsandbox.agent import profile_for, profile_for_with_guards
from agsandbox.cli import Agent

config = SimpleNamespace(browser=SimpleNamespace(pi_skill_path="/home/dev/browser-skill"))

pi = profile_for(Agent.PI, config)
print(pi.command, pi.command_args, pi.browser_skill_flag, pi.browser_skill_path)

claude = profile_for_with_guards(Agent.CLAUDE, config, guard_enabled=False)
print(claude.command_args)
```

Any object with a `browser.pi_skill_path` attribute serves as `config`.

## Running the auth proxy

```python
from agsandbox.host import AuthProxyGuard, AuthProxyHost, start_with_host


class AlwaysAllow(AuthProxyHost):
    def prompt_user(self, url, has_callback):
        return True

    def open_browser(self, url):
        print("would open", url)


with start_with_host("/tmp/ags-auth-proxy", AlwaysAllow()) as guard:
    print("socket lives under", guard.runtime_dir)
    print("mount it at", AuthProxyGuard.container_runtime_dir())
```

`start(runtime_dir, auto_allow_domains)` uses `OsAuthProxyHost`: URLs on
the listed domains (or their subdomains) are opened without asking,
everything else is confirmed through `zenity` or `kdialog` (denied if
neither is installed) and opened with `xdg-open`. A host's
`open_browser` signals failure by raising; the shim is then sent an error
message. Closing the guard stops the listener and removes the runtime
directory. Startup failures raise `AuthProxyError`.

Helpers that are useful on their own:

```python
from agsandbox.host import display_url, is_auto_allowed

is_auto_allowed("https://accounts.example.com/login", ["example.com"])  # True
display_url("https://example.com/auth?code=abc&x=<y>")  # 'https://example.com/auth?...'
```

`read_http_request` and `write_http_response` read and write the minimal
HTTP/1.1 used for the callback relay on binary streams.

## Protocol messages

```python
from agsandbox.protocol import OpenUrl, decode_shim_message, encode_message

message = OpenUrl(session_id="s1", url="https://example.com", callback_port=8080)
line = encode_message(message)
assert decode_shim_message(line) == message
```

The shim sends `OpenUrl` and `CallbackResponse`; the host sends
`PromptResult`, `CallbackRequest`, `SessionComplete` and `ErrorMessage`.
`decode_host_message` reads the host's messages. Malformed lines raise
`ProtocolError`.

## Browser sidecar

`start_if_needed(browser_mode, config)` returns `None` when browser mode is
off, and otherwise a `BrowserSidecar` whose `port` is the debug port and
whose `socat_command()` is the forwarding command for the container's
entrypoint. `config` is any object with `enabled`, `command`,
`command_args`, `profile_dir` and `debug_port`. Use the sidecar as a
context manager (or call `stop()`) to end a browser it started.
`is_debug_port_open(port)` checks whether something listens on the port.
Failures raise `BrowserError`, whose `kind` (a `BrowserErrorKind`) tells
them apart.

## What this package does not do

- It installs no command. `parse_args` recognises the subcommands and run
  flags, but nothing here carries them out: there is no setup, doctor,
  update, install, alias or completion logic.
- It does not read a configuration file, build a container launch plan,
  or start a container. The agent profile and browser functions take
  configuration objects you supply.
- It ships none of the guard extension, hook, skill or shim files that the
  profiles refer to by container path.