import os
import shlex
import psutil
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import LaunchSpecError

EXEC_MODES = ("fork", "cluster")

# File key -> LaunchSpec attribute, in the order keys are written back out.
FIELD_KEYS: Tuple[Tuple[str, str], ...] = (
    ("name", "name"),
    ("script", "command"),
    ("args", "arguments"),
    ("cwd", "cwd"),
    ("env", "environment"),
    ("watch", "watch"),
    ("instances", "instances"),
    ("exec_mode", "exec_mode"),
    ("autorestart", "autorestart"),
    ("max_restarts", "max_restarts"),
    ("restart_delay", "restart_delay"),
    ("kill_timeout", "kill_timeout"),
)
_KNOWN_KEYS = {key for key, _ in FIELD_KEYS}


def _env_string(value: Any) -> str:
    """Stringifies an env value the way Node does when assigning to process.env."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value)
    raise LaunchSpecError(f"Environment values must be scalars, got {type(value).__name__}.")


def _optional_int(app: str, key: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise LaunchSpecError(f"App '{app}': '{key}' must be a non-negative integer, got {value!r}.")
    return value


@dataclass(frozen=True)
class LaunchSpec:
    """A single entry of an ecosystem file's `apps` list."""
    name: str
    command: str
    arguments: str = ""
    environment: Dict[str, str] = field(default_factory=dict)
    watch: Union[bool, List[str]] = False
    instances: Union[int, str] = 1
    exec_mode: str = "fork"
    cwd: Optional[str] = None
    autorestart: Optional[bool] = None
    max_restarts: Optional[int] = None
    restart_delay: Optional[int] = None    # milliseconds
    kill_timeout: Optional[int] = None     # milliseconds
    extra: Dict[str, Any] = field(default_factory=dict)
    # Keys present in the source file, so defaults it spelled out are written back
    declared: Tuple[str, ...] = field(default=(), compare=False, repr=False)
    # Env values as written in the source, so numbers and strings keep their type
    env_literals: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.validate()

    #* --- Construction & Serialization ---
    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LaunchSpec":
        """
        Builds a LaunchSpec from one parsed app entry.

        :param data: The mapping as read from the ecosystem file (pm2 key names).
        :return: A validated LaunchSpec.
        :raises LaunchSpecError: If a field is missing or holds an invalid value.
        """
        if not isinstance(data, Mapping):
            raise LaunchSpecError(f"App entries must be objects, got {type(data).__name__}.")

        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise LaunchSpecError("Every app needs a non-empty string 'name'.")
        if "script" not in data:
            raise LaunchSpecError(f"App '{name}': missing 'script'.")

        env = data.get("env") or {}
        if not isinstance(env, Mapping):
            raise LaunchSpecError(f"App '{name}': 'env' must be an object.")

        kwargs: Dict[str, Any] = {attr: data[key] for key, attr in FIELD_KEYS if key in data}
        kwargs["environment"] = {str(k): _env_string(v) for k, v in env.items()}
        kwargs["extra"] = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        kwargs["declared"] = tuple(k for k in data if k in _KNOWN_KEYS)
        kwargs["env_literals"] = {str(k): v for k, v in env.items()}
        if isinstance(kwargs.get("watch"), list):
            kwargs["watch"] = list(kwargs["watch"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """
        Returns the entry as an ordered mapping using pm2 key names.

        Keys holding their default value are left out unless the source file
        declared them.
        """
        defaults = {f.name: f.default for f in fields(self)}
        defaults["environment"] = {}
        data: Dict[str, Any] = {}
        for key, attr in FIELD_KEYS:
            value = getattr(self, attr)
            if key not in ("name", "script") and key not in self.declared and value == defaults[attr]:
                continue
            if key == "env":
                value = {k: self._env_literal(k, v) for k, v in value.items()}
            data[key] = value
        data.update(self.extra)
        return data

    def _env_literal(self, key: str, value: str) -> Any:
        """The source value of an env entry, or the string itself when it was changed or added."""
        literal = self.env_literals.get(key, value)
        return literal if _env_string(literal) == value else value

    def validate(self) -> None:
        """
        Checks field types and the exec_mode/instances pairing.

        :raises LaunchSpecError: On the first violation found.
        """
        if not isinstance(self.name, str) or not self.name:
            raise LaunchSpecError("Every app needs a non-empty string 'name'.")
        if not isinstance(self.command, str) or not self.command:
            raise LaunchSpecError(f"App '{self.name}': 'script' must be a non-empty string.")
        if not isinstance(self.arguments, str):
            raise LaunchSpecError(f"App '{self.name}': 'args' must be a single string.")
        if self.cwd is not None and not isinstance(self.cwd, str):
            raise LaunchSpecError(f"App '{self.name}': 'cwd' must be a string.")
        if not isinstance(self.watch, bool) and not (
            isinstance(self.watch, list) and all(isinstance(p, str) for p in self.watch)
        ):
            raise LaunchSpecError(f"App '{self.name}': 'watch' must be a boolean or a list of paths.")
        if self.autorestart is not None and not isinstance(self.autorestart, bool):
            raise LaunchSpecError(f"App '{self.name}': 'autorestart' must be a boolean.")
        for key in ("max_restarts", "restart_delay", "kill_timeout"):
            _optional_int(self.name, key, getattr(self, key))

        if self.exec_mode not in EXEC_MODES:
            raise LaunchSpecError(
                f"App '{self.name}': unknown exec_mode {self.exec_mode!r} (expected one of {', '.join(EXEC_MODES)})."
            )
        if isinstance(self.instances, bool) or not (
            isinstance(self.instances, int) or self.instances == "max"
        ):
            raise LaunchSpecError(f"App '{self.name}': 'instances' must be an integer or 'max'.")
        if self.exec_mode == "fork" and self.instances != 1:
            raise LaunchSpecError(
                f"App '{self.name}': fork mode runs a single process, 'instances' must be 1 (got {self.instances!r})."
            )
        if isinstance(self.instances, int) and self.instances < -1:
            raise LaunchSpecError(f"App '{self.name}': 'instances' cannot be below -1.")

        try:
            self.port
        except LaunchSpecError:
            raise
        except ValueError as e:
            raise LaunchSpecError(f"App '{self.name}': {e}") from e

    #* --- Command Line ---
    def tokens(self) -> List[str]:
        """Splits the argument string using POSIX shell-word rules."""
        try:
            return shlex.split(self.arguments)
        except ValueError as e:
            raise LaunchSpecError(f"App '{self.name}': cannot tokenize args: {e}") from e

    def argv(self) -> List[str]:
        """Returns the full command line as a list, command first."""
        return [self.command, *self.tokens()]

    def flag_values(self) -> List[Tuple[str, Optional[str]]]:
        """
        Returns the long options of the argument string in order of appearance.

        `--flag=value` and `--flag value` both yield `(flag, value)`; a flag
        followed by another option or by nothing yields `(flag, None)`.
        Positional arguments are skipped.
        """
        tokens = self.tokens()
        flags: List[Tuple[str, Optional[str]]] = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.startswith("--"):
                if "=" in token:
                    flag, value = token.split("=", 1)
                    flags.append((flag, value))
                elif i + 1 < len(tokens) and not tokens[i + 1].startswith("-"):
                    flags.append((token, tokens[i + 1]))
                    i += 1
                else:
                    flags.append((token, None))
            i += 1
        return flags

    def flag(self, name: str) -> Optional[str]:
        """Returns the value of the last occurrence of a long option, or None."""
        value = None
        for flag, flag_value in self.flag_values():
            if flag == name:
                value = flag_value
        return value

    @property
    def port(self) -> Optional[int]:
        """The port from `--port`, falling back to the PORT environment variable."""
        raw = self.flag("--port")
        source = "--port"
        if raw is None:
            raw = self.environment.get("PORT")
            source = "env PORT"
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{source} is not a number: {raw!r}") from None

    @property
    def bind_host(self) -> str:
        """The address used to check the port; wildcard binds are checked on loopback."""
        host = self.flag("--ip")
        if not host or host in ("0.0.0.0", "::"):
            return "127.0.0.1"
        return host

    def check_port_consistency(self) -> None:
        """
        Verifies that env PORT and the `--port` flag agree when both are given.

        :raises LaunchSpecError: If the two differ numerically.
        """
        flag_port = self.flag("--port")
        env_port = self.environment.get("PORT")
        if flag_port is None or env_port is None:
            return
        try:
            consistent = int(flag_port) == int(env_port)
        except ValueError:
            consistent = False
        if not consistent:
            raise LaunchSpecError(
                f"App '{self.name}': env PORT={env_port} does not match --port {flag_port}."
            )

    #* --- Process Model ---
    @property
    def should_autorestart(self) -> bool:
        return True if self.autorestart is None else self.autorestart

    def resolved_instances(self, cpu_count: Optional[int] = None) -> int:
        """
        Returns how many copies of the app to run.

        `0` and `'max'` mean one per CPU, `-1` one per CPU minus one.
        """
        if self.exec_mode == "fork":
            return 1
        cpus = cpu_count or psutil.cpu_count(logical=True) or 1
        if self.instances in (0, "max"):
            return cpus
        if self.instances == -1:
            return max(cpus - 1, 1)
        return int(self.instances)

    def process_keys(self, cpu_count: Optional[int] = None) -> List[str]:
        """Registry keys of every process this app runs."""
        count = self.resolved_instances(cpu_count)
        if count == 1:
            return [self.name]
        return [f"{self.name}-{i}" for i in range(count)]

    def working_directory(self, base_dir: Path) -> Path:
        if self.cwd is None:
            return base_dir
        cwd = Path(self.cwd).expanduser()
        return cwd if cwd.is_absolute() else base_dir / cwd

    def watch_paths(self, base_dir: Path) -> List[Path]:
        """Paths to observe for restarts; empty when watching is disabled."""
        if self.watch is True:
            return [self.working_directory(base_dir)]
        if not self.watch:
            return []
        workdir = self.working_directory(base_dir)
        return [workdir / p for p in self.watch]

    def child_environment(self, base: Optional[Mapping[str, str]] = None, instance: int = 0) -> Dict[str, str]:
        """
        Builds the environment for one process of this app.

        :param base: The inherited environment, `os.environ` when omitted.
        :param instance: The instance index, exported as NODE_APP_INSTANCE in cluster mode.
        """
        env = dict(os.environ if base is None else base)
        env.update(self.environment)
        if self.exec_mode == "cluster":
            env["NODE_APP_INSTANCE"] = str(instance)
        return env


@dataclass
class Ecosystem:
    """The parsed content of an ecosystem file: an ordered list of apps."""
    apps: List[LaunchSpec] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    source: Optional[Path] = None
    fmt: str = "js"
    # Top-level keys in source order, "apps" included
    declared: List[str] = field(default_factory=list, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Any, source: Optional[Path] = None, fmt: str = "js") -> "Ecosystem":
        """
        Builds an Ecosystem from the parsed top-level object.

        :raises LaunchSpecError: If `apps` is missing or app names repeat.
        """
        if not isinstance(data, Mapping):
            raise LaunchSpecError("The ecosystem file must export an object.")
        apps = data.get("apps")
        if not isinstance(apps, list):
            raise LaunchSpecError("The ecosystem file must define an 'apps' list.")

        specs = [LaunchSpec.from_dict(entry) for entry in apps]
        seen = set()
        for spec in specs:
            if spec.name in seen:
                raise LaunchSpecError(f"Duplicate app name '{spec.name}'. App names must be unique.")
            seen.add(spec.name)

        extra = {k: v for k, v in data.items() if k != "apps"}
        return cls(apps=specs, extra=extra, source=source, fmt=fmt, declared=list(data))

    def to_dict(self) -> Dict[str, Any]:
        """Returns the top-level object, keys in the order they were read; `apps` first otherwise."""
        values = {"apps": [spec.to_dict() for spec in self.apps], **self.extra}
        data: Dict[str, Any] = {}
        for key in [*self.declared, *values]:
            if key in values and key not in data:
                data[key] = values[key]
        return data

    def get(self, name: str) -> LaunchSpec:
        for spec in self.apps:
            if spec.name == name:
                return spec
        raise KeyError(f"No app named '{name}' in the ecosystem.")

    def app_for_key(self, key: str) -> Tuple[LaunchSpec, int]:
        """Maps a process registry key back to its app and instance index."""
        for spec in self.apps:
            for index, candidate in enumerate(spec.process_keys()):
                if candidate == key:
                    return spec, index
        raise KeyError(f"No process '{key}' in the ecosystem.")

    @property
    def names(self) -> List[str]:
        return [spec.name for spec in self.apps]

    def __iter__(self) -> Iterator[LaunchSpec]:
        return iter(self.apps)

    def __len__(self) -> int:
        return len(self.apps)
