"""Structured logging configured from the environment.

Records at error level go to a separate error output; other records go to
the regular output. Three formats are supported: ``text``, ``json`` and a
coloured console format (the default).
"""

from __future__ import annotations

import gzip
import inspect
import json
import os
import shutil
import sys
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, NamedTuple, Protocol


class Level(IntEnum):
    """Severity of a log record."""

    DEBUG = -4
    INFO = 0
    WARN = 4
    ERROR = 8

    def __str__(self) -> str:
        return self.name


def parse_level(text: str) -> Level:
    """Map a level name to a Level; unknown names mean debug."""
    return {
        "debug": Level.DEBUG,
        "info": Level.INFO,
        "warn": Level.WARN,
        "error": Level.ERROR,
    }.get(text.lower(), Level.DEBUG)


_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(var: str, raw: str) -> bool:
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f'env: parse error on variable "{var}": invalid boolean {raw!r}')


def _parse_int(var: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'env: parse error on variable "{var}": invalid integer {raw!r}') from None


_ENV_FIELDS: dict[str, tuple[str, type]] = {
    "verbose": ("YOMO_LOG_VERBOSE", bool),
    "level": ("YOMO_LOG_LEVEL", str),
    "output": ("YOMO_LOG_OUTPUT", str),
    "error_output": ("YOMO_LOG_ERROR_OUTPUT", str),
    "format": ("YOMO_LOG_FORMAT", str),
    "max_size": ("YOMO_LOG_MAX_SIZE", int),
    "max_backups": ("YOMO_LOG_MAX_BACKUPS", int),
    "max_age": ("YOMO_LOG_MAX_AGE", int),
    "local_time": ("YOMO_LOG_LOCAL_TIME", bool),
    "compress": ("YOMO_LOG_COMPRESS", bool),
}


@dataclass
class LogConfig:
    """Logger settings.

    ``output`` and ``error_output`` are file names, or ``stdout``/``stderr``;
    empty means stdout and stderr respectively. Files rotate at ``max_size``
    megabytes (100 when 0).
    """

    verbose: bool = False
    level: str = "info"
    output: str = ""
    error_output: str = ""
    format: str = ""
    max_size: int = 0
    max_backups: int = 0
    max_age: int = 0
    local_time: bool = False
    compress: bool = False
    disable_time: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LogConfig:
        """Read the configuration from ``YOMO_LOG_*`` variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, (var, kind) in _ENV_FIELDS.items():
            raw = env.get(var)
            if not raw:
                continue
            if kind is bool:
                values[field_name] = _parse_bool(var, raw)
            elif kind is int:
                values[field_name] = _parse_int(var, raw)
            else:
                values[field_name] = raw
        return cls(**values)


# ---------------------------------------------------------------- writers


class _Writer(Protocol):
    def write(self, text: str) -> None: ...


class _StandardStream:
    """Writes to the process's current stdout or stderr."""

    def __init__(self, name: str) -> None:
        self._name = name

    def write(self, text: str) -> None:
        stream = sys.stdout if self._name == "stdout" else sys.stderr
        stream.write(text)
        stream.flush()


class _RotatingFile:
    """Appends to a file, moving it aside to a timestamped backup when full."""

    _MEGABYTE = 1024 * 1024
    _STAMP = "%Y-%m-%dT%H-%M-%S.%f"

    def __init__(
        self,
        filename: str,
        max_size: int,
        max_age: int,
        max_backups: int,
        local_time: bool,
        compress: bool,
    ) -> None:
        self._path = Path(filename)
        self._max_bytes = (max_size if max_size > 0 else 100) * self._MEGABYTE
        self._max_age = max_age
        self._max_backups = max_backups
        self._local_time = local_time
        self._compress = compress
        self._file = None
        self._size = 0
        self._lock = threading.Lock()

    def write(self, text: str) -> None:
        data = text.encode("utf-8")
        with self._lock:
            if len(data) > self._max_bytes:
                raise OSError(
                    f"write length {len(data)} exceeds maximum file size {self._max_bytes}"
                )
            if self._file is None:
                self._open_existing_or_new(len(data))
            elif self._size + len(data) > self._max_bytes:
                self._rotate()
            self._file.write(data)
            self._file.flush()
            self._size += len(data)

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def _now(self) -> datetime:
        return datetime.now() if self._local_time else datetime.now(timezone.utc)

    def _open_existing_or_new(self, incoming: int) -> None:
        self._mill()
        try:
            size = self._path.stat().st_size
        except FileNotFoundError:
            self._open_new()
            return
        if size + incoming >= self._max_bytes:
            self._rotate()
            return
        self._file = open(self._path, "ab")
        self._size = size

    def _open_new(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.exists():
            self._path.rename(self._backup_path())
        self._file = open(self._path, "wb")
        self._size = 0

    def _rotate(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        self._open_new()
        self._mill()

    def _backup_path(self) -> Path:
        now = self._now()
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S.") + f"{now.microsecond // 1000:03d}"
        return self._path.with_name(f"{self._path.stem}-{stamp}{self._path.suffix}")

    def _backups(self) -> list[tuple[datetime, Path]]:
        prefix = f"{self._path.stem}-"
        ext = self._path.suffix
        found = []
        directory = self._path.parent
        if not directory.is_dir():
            return found
        for entry in directory.iterdir():
            name = entry.name
            if not entry.is_file() or not name.startswith(prefix):
                continue
            body = name[len(prefix):]
            if body.endswith(".gz"):
                body = body[:-3]
            if ext:
                if not body.endswith(ext):
                    continue
                body = body[: -len(ext)]
            try:
                stamp = datetime.strptime(body, self._STAMP)
            except ValueError:
                continue
            if not self._local_time:
                stamp = stamp.replace(tzinfo=timezone.utc)
            found.append((stamp, entry))
        found.sort(key=lambda item: item[0], reverse=True)
        return found

    def _mill(self) -> None:
        if not (self._max_backups or self._max_age or self._compress):
            return
        keep = self._backups()
        remove: list[Path] = []
        if self._max_backups > 0:
            remove.extend(path for _, path in keep[self._max_backups:])
            keep = keep[: self._max_backups]
        if self._max_age > 0:
            cutoff = self._now() - timedelta(days=self._max_age)
            remove.extend(path for stamp, path in keep if stamp < cutoff)
            keep = [(stamp, path) for stamp, path in keep if stamp >= cutoff]
        for path in remove:
            path.unlink(missing_ok=True)
        if self._compress:
            for _, path in keep:
                if path.name.endswith(".gz"):
                    continue
                with open(path, "rb") as src, gzip.open(f"{path}.gz", "wb") as dst:
                    shutil.copyfileobj(src, dst)
                path.unlink(missing_ok=True)


def _parse_writer(config: LogConfig, path: str, default: _Writer) -> _Writer:
    lowered = path.lower()
    if lowered in ("stdout", "stderr"):
        return _StandardStream(lowered)
    if path:
        return _RotatingFile(
            path,
            config.max_size,
            config.max_age,
            config.max_backups,
            config.local_time,
            config.compress,
        )
    return default


# ------------------------------------------------------------- formatting


class _Source(NamedTuple):
    function: str
    file: str
    line: int


_Attr = tuple[tuple[str, ...], str, Any]
_Formatter = Callable[[Level, str, Iterable[_Attr], "datetime | None", "_Source | None"], str]


def _pairs(args: Iterable[Any]) -> list[tuple[str, Any]]:
    """Turn alternating keys and values into pairs, flagging bad keys."""
    pairs = []
    it = iter(args)
    for item in it:
        if isinstance(item, str):
            try:
                value = next(it)
            except StopIteration:
                pairs.append(("!BADKEY", item))
                break
            pairs.append((item, value))
        else:
            pairs.append(("!BADKEY", item))
    return pairs


def _plain_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _needs_quoting(text: str) -> bool:
    if not text:
        return True
    return any(ch in ' ="' or not ch.isprintable() for ch in text)


def _quoted(text: str) -> str:
    return json.dumps(text, ensure_ascii=False) if _needs_quoting(text) else text


def _dotted(groups: tuple[str, ...], key: str) -> str:
    return ".".join((*groups, key))


def _rfc3339(when: datetime, timespec: str) -> str:
    text = when.isoformat(timespec=timespec)
    if when.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _format_text(level, msg, attrs, when, source) -> str:
    parts = []
    if when is not None:
        parts.append("time=" + _rfc3339(when, "milliseconds"))
    parts.append(f"level={level}")
    if source is not None:
        parts.append("source=" + _quoted(f"{source.file}:{source.line}"))
    parts.append("msg=" + _quoted(msg))
    for groups, key, value in attrs:
        parts.append(f"{_quoted(_dotted(groups, key))}={_quoted(_plain_value(value))}")
    return " ".join(parts) + "\n"


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple, dict)):
        return value
    return str(value)


def _format_json(level, msg, attrs, when, source) -> str:
    record: dict[str, Any] = {}
    if when is not None:
        record["time"] = _rfc3339(when, "microseconds")
    record["level"] = str(level)
    if source is not None:
        record["source"] = {"function": source.function, "file": source.file, "line": source.line}
    record["msg"] = msg
    for groups, key, value in attrs:
        node = record
        for group in groups:
            child = node.get(group)
            if not isinstance(child, dict):
                child = node[group] = {}
            node = child
        node[key] = _json_value(value)
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str) + "\n"


_RESET = "\x1b[0m"
_FAINT = "\x1b[2m"
_BRIGHT_RED = "\x1b[91m"
_BRIGHT_GREEN = "\x1b[92m"
_BRIGHT_YELLOW = "\x1b[93m"


def _kitchen(when: datetime) -> str:
    hour = when.hour % 12 or 12
    return f"{hour}:{when.minute:02d}{'AM' if when.hour < 12 else 'PM'}"


def _tint_level(level: Level) -> str:
    if level < Level.INFO:
        return "DBG"
    if level < Level.WARN:
        return f"{_BRIGHT_GREEN}INF{_RESET}"
    if level < Level.ERROR:
        return f"{_BRIGHT_YELLOW}WRN{_RESET}"
    return f"{_BRIGHT_RED}ERR{_RESET}"


def _format_tint(level, msg, attrs, when, source) -> str:
    parts = []
    if when is not None:
        parts.append(f"{_FAINT}{_kitchen(when)}{_RESET}")
    parts.append(_tint_level(level))
    if source is not None:
        path = Path(source.file)
        parts.append(f"{_FAINT}{path.parent.name}/{path.name}:{source.line}{_RESET}")
    parts.append(msg)
    for groups, key, value in attrs:
        parts.append(f"{_FAINT}{_dotted(groups, key)}={_RESET}{_quoted(_plain_value(value))}")
    return " ".join(parts) + "\n"


def _formatter_for(fmt: str) -> _Formatter:
    return {"json": _format_json, "text": _format_text}.get(fmt.lower(), _format_tint)


@dataclass(frozen=True)
class _Sink:
    formatter: _Formatter
    level: Level
    add_source: bool
    disable_time: bool
    writer: _Writer
    err_writer: _Writer


# ----------------------------------------------------------------- logger


class Logger:
    """A structured logger; derive bound or grouped loggers with bind and with_group."""

    def __init__(self, sink: _Sink, attrs: tuple[_Attr, ...] = (), groups: tuple[str, ...] = ()) -> None:
        self._sink = sink
        self._attrs = attrs
        self._groups = groups
        self._lock = threading.Lock()

    def enabled(self, level: Level) -> bool:
        return level >= self._sink.level

    def debug(self, msg: str, *args: Any) -> None:
        self._log(Level.DEBUG, msg, args, 2)

    def info(self, msg: str, *args: Any) -> None:
        self._log(Level.INFO, msg, args, 2)

    def warn(self, msg: str, *args: Any) -> None:
        self._log(Level.WARN, msg, args, 2)

    def error(self, msg: str, *args: Any) -> None:
        self._log(Level.ERROR, msg, args, 2)

    def bind(self, *args: Any) -> Logger:
        """Return a logger that adds the given key/value pairs to every record."""
        if not args:
            return self
        extra = tuple((self._groups, key, value) for key, value in _pairs(args))
        return Logger(self._sink, self._attrs + extra, self._groups)

    def with_group(self, name: str) -> Logger:
        """Return a logger whose later attributes are nested under ``name``."""
        if not name:
            return self
        return Logger(self._sink, self._attrs, self._groups + (name,))

    def _log(self, level: Level, msg: str, args: tuple[Any, ...], stacklevel: int) -> None:
        if not self.enabled(level):
            return
        sink = self._sink
        when = None if sink.disable_time else datetime.now().astimezone()
        source = None
        if sink.add_source:
            frame = inspect.currentframe()
            for _ in range(stacklevel):
                if frame is not None:
                    frame = frame.f_back
            if frame is not None:
                source = _Source(frame.f_code.co_name, frame.f_code.co_filename, frame.f_lineno)
        attrs = self._attrs + tuple((self._groups, key, value) for key, value in _pairs(args))
        line = sink.formatter(level, msg, attrs, when, source)
        writer = sink.err_writer if level == Level.ERROR else sink.writer
        with self._lock:
            writer.write(line)


def new_logger(config: LogConfig) -> Logger:
    """Build a logger from ``config``."""
    sink = _Sink(
        formatter=_formatter_for(config.format),
        level=parse_level(config.level),
        add_source=config.verbose,
        disable_time=config.disable_time,
        writer=_parse_writer(config, config.output, _StandardStream("stdout")),
        err_writer=_parse_writer(config, config.error_output, _StandardStream("stderr")),
    )
    return Logger(sink)


def default_logger(environ: Mapping[str, str] | None = None) -> Logger:
    """Build a logger configured from the environment."""
    return new_logger(LogConfig.from_env(environ))


_default: Logger | None = None


def set_default(logger: Logger) -> None:
    """Replace the logger used by the module-level functions."""
    global _default
    _default = logger


def _current() -> Logger:
    global _default
    if _default is None:
        _default = default_logger()
    return _default


def debug(msg: str, *args: Any) -> None:
    _current()._log(Level.DEBUG, msg, args, 2)


def info(msg: str, *args: Any) -> None:
    _current()._log(Level.INFO, msg, args, 2)


def warn(msg: str, *args: Any) -> None:
    _current()._log(Level.WARN, msg, args, 2)


def error(msg: str, *args: Any) -> None:
    _current()._log(Level.ERROR, msg, args, 2)