"""Loguru-style logger backed by stdlib logging + rich.

Usage::

    from kubeward.observability.logger import logger

    log = logger.bind(reconciler="machine")
    log.info("Provisioned {node} in {profile}", node="node-3", profile="dev")

Bound extras listed in ``CONTEXT_KEYS`` are rendered after the message, so a
line reads ``Provisioned node-3 in dev [reconciler=machine ref=KubeMachine/default/m3]``.
"""

from __future__ import annotations

import gzip
import inspect
import logging
import logging.handlers
import os
import shutil
import sys
from typing import TextIO

from rich.logging import RichHandler

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_root = logging.getLogger("kubeward")

CONTEXT_KEYS = ("actor", "component", "reconciler", "provisioner", "ref", "profile", "node")


def _caller_logger() -> logging.Logger:
    frame = inspect.stack()[3]
    module = frame.frame.f_globals.get("__name__", "kubeward")
    return logging.getLogger(module)


def _format_message(msg: str, args: tuple[object, ...], kwargs: dict[str, object]) -> str:
    if kwargs:
        return msg.format(**kwargs)
    if args:
        return msg.format(*args)
    return msg


def _context_suffix(extras: dict[str, object]) -> str:
    parts = [f"{k}={extras[k]}" for k in CONTEXT_KEYS if k in extras]
    return f" [{' '.join(parts)}]" if parts else ""


class BoundLogger:
    __slots__ = ("_extras",)

    def __init__(self, extras: dict[str, object] | None = None) -> None:
        self._extras = extras or {}

    def bind(self, **kwargs: object) -> BoundLogger:
        return BoundLogger({**self._extras, **kwargs})

    def _log(self, level: int, message: str, /, *args: object, **kwargs: object) -> None:
        exc_info = kwargs.pop("exc_info", False)
        lib_logger = _caller_logger()
        if not lib_logger.isEnabledFor(level):
            return
        context = {
            **self._extras,
            **{k: v for k, v in kwargs.items() if k in CONTEXT_KEYS and "{" + k not in message},
        }
        text = _format_message(message, args, kwargs) + _context_suffix(context)
        frame = inspect.stack()[2]
        record = lib_logger.makeRecord(
            name=lib_logger.name,
            level=level,
            fn=frame.filename,
            lno=frame.lineno,
            msg=text,
            args=(),
            exc_info=sys.exc_info() if exc_info else None,
            func=frame.function,
        )
        record.filename = os.path.basename(frame.filename)
        record.extras = self._extras  # type: ignore[attr-defined]
        lib_logger.handle(record)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(TRACE, message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, message, *args, **kwargs)


_handler_counter = 0
_handlers: dict[int, logging.Handler] = {}


def _namer(name: str) -> str:
    return name + ".gz"


def _rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size: str) -> int:
    """``"50 MB"`` → bytes. Raises ValueError on anything else."""
    match size.strip().split():
        case [num, unit] if num.isdigit() and unit.upper() in _SIZE_UNITS:
            return int(num) * _SIZE_UNITS[unit.upper()]
        case _:
            raise ValueError(f"Invalid size {size!r}, expected e.g. \"50 MB\"")


def _make_file_handler(
    path: str,
    *,
    level: int,
    rotation: str | None,
    retention: int | None,
    compression: bool,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=parse_size(rotation or "50 MB"),
        backupCount=retention if retention is not None else 10,
    )
    if compression:
        handler.namer = _namer
        handler.rotator = _rotator
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
        "%(name)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    return handler


def _make_console_handler(level: int, stream: TextIO | None) -> logging.Handler:
    from rich.console import Console

    handler = RichHandler(
        level=level,
        console=Console(file=stream) if stream is not None else None,
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


class LoguruCompat:
    def __init__(self) -> None:
        self._bound = BoundLogger()

    def bind(self, **kwargs: object) -> BoundLogger:
        return self._bound.bind(**kwargs)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.trace(message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.debug(message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.info(message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.warning(message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.error(message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.exception(message, *args, **kwargs)

    def remove(self, handler_id: int | None = None) -> None:
        if handler_id is None:
            for h in list(_handlers.values()):
                _root.removeHandler(h)
            _handlers.clear()
            return
        if h := _handlers.pop(handler_id, None):
            _root.removeHandler(h)

    def add(
        self,
        sink: str | TextIO,
        *,
        level: str = "DEBUG",
        rotation: str | None = None,
        retention: int | None = None,
        compression: bool = False,
    ) -> int:
        global _handler_counter
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            numeric_level = logging.DEBUG

        match sink:
            case str() as path:
                handler = _make_file_handler(
                    path,
                    level=numeric_level,
                    rotation=rotation,
                    retention=retention,
                    compression=compression,
                )
            case stream:
                handler = _make_console_handler(numeric_level, stream)

        _root.addHandler(handler)
        _handler_counter += 1
        _handlers[_handler_counter] = handler
        return _handler_counter

    def enable(self, name: str = "kubeward") -> None:
        target = logging.getLogger(name)
        target.disabled = False
        target.setLevel(TRACE)

    def disable(self, name: str = "kubeward") -> None:
        logging.getLogger(name).disabled = True


logger = LoguruCompat()

_root.setLevel(TRACE)
_root.propagate = False
