"""
Hierarchical runtime tracing for the inktrace pipeline.

Provides structured, nested logging with timing information so a run can be
followed stage by stage without stepping through code. Span depth is kept
per thread because per-color stages run on a worker pool.
"""

import functools
import hashlib
import json
import sys
import threading
import time
from contextlib import contextmanager
from datetime import datetime

import numpy as np
from pydantic import BaseModel
from shapely.geometry.base import BaseGeometry

from inktrace.models import Diagnostic, Mask, Palette, PixelBuffer


class TracerConfig:
    """Configuration for the tracer."""

    def __init__(self):
        self.enabled = False
        self.level = "INFO"
        self.file_path = None
        self.json_output = False
        self._file_handle = None

    def configure(self, enabled=False, level="INFO", file_path=None, json_output=False):
        """Configure tracer settings."""
        self.enabled = enabled
        self.level = level.upper()
        self.file_path = file_path
        self.json_output = json_output

        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

        if file_path and enabled:
            self._file_handle = open(file_path, "w", encoding="utf-8")

    def close(self):
        """Close file handle if open."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None


class Tracer:
    """
    Hierarchical tracer for structured pipeline logging.

    Supports nested spans with timing, argument summarization, and
    multiple output formats (text, JSON). Writes are serialized with a lock;
    nesting state lives in thread-local storage.
    """

    LEVELS = {"ERROR": 0, "WARN": 1, "INFO": 2, "DEBUG": 3}

    def __init__(self):
        self.config = TracerConfig()
        self._local = threading.local()
        self._lock = threading.Lock()

    @property
    def _depth(self):
        return getattr(self._local, "depth", 0)

    @_depth.setter
    def _depth(self, value):
        self._local.depth = value

    @property
    def _span_stack(self):
        stack = getattr(self._local, "span_stack", None)
        if stack is None:
            stack = []
            self._local.span_stack = stack
        return stack

    def _should_log(self, level):
        """Check if this level should be logged."""
        if not self.config.enabled:
            return False
        return self.LEVELS.get(level, 2) <= self.LEVELS.get(self.config.level, 2)

    def _format_timestamp(self):
        """Format current time as HH:MM:SS.mmm."""
        now = datetime.now()
        return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"

    def _write(self, level, module, func, message, meta=None):
        """Write a log line."""
        if not self._should_log(level):
            return

        timestamp = self._format_timestamp()
        indent = "  " * self._depth
        location = f"{module}:{func}" if func else module
        thread = threading.current_thread().name

        if self.config.json_output:
            line = json.dumps({
                "timestamp": timestamp,
                "level": level,
                "thread": thread,
                "depth": self._depth,
                "module": module,
                "function": func,
                "message": message,
                "meta": {k: summarize(v) for k, v in (meta or {}).items()},
            })
        else:
            line = f"{timestamp} {level:<5} [{thread}] {indent}{location}  {message}"

        with self._lock:
            print(line, file=sys.stderr)
            if self.config._file_handle:
                self.config._file_handle.write(line + "\n")
                self.config._file_handle.flush()

    def _pop_span(self):
        """Leave the innermost span; returns its elapsed time in ms."""
        self._depth -= 1
        _, _, start_time = self._span_stack.pop()
        return (time.perf_counter() - start_time) * 1000

    @contextmanager
    def span(self, name, module="", **meta):
        """
        Context manager for a traced span.

        Logs start and end with timing information; a failing span logs the
        error at ERROR level and re-raises.
        """
        if not self.config.enabled:
            yield
            return

        meta_str = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        self._write("INFO", module, name, f"start {meta_str}".strip(), meta)
        self._depth += 1
        self._span_stack.append((name, module, time.perf_counter()))

        try:
            yield
        except Exception as e:
            elapsed = self._pop_span()
            self._write("ERROR", module, name, f"failed dt={elapsed:.0f}ms error={type(e).__name__}: {str(e)[:100]}")
            raise
        self._write("INFO", module, name, f"end ok dt={self._pop_span():.0f}ms")

    def event(self, message, level="INFO", **meta):
        """Log a one-off event within the current span."""
        if not self._should_log(level):
            return

        module = ""
        func = ""
        if self._span_stack:
            func, module, _ = self._span_stack[-1]

        meta_str = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        full_message = f"{message} {meta_str}".strip()
        self._write(level, module, func, full_message, meta)


class Telemetry:
    """
    Per-run collector of recovered conditions.

    Each record is kept as a Diagnostic for the output document and echoed
    to the tracer. Safe to share between worker threads of one run.
    """

    def __init__(self, tracer=None):
        self.tracer = tracer or get_tracer()
        self.diagnostics = []
        self._lock = threading.Lock()

    def record(self, kind, stage, message, level="WARN", **evidence):
        """Store a diagnostic and log it."""
        diagnostic = Diagnostic(kind=kind, stage=stage, message=message, evidence=evidence)
        with self._lock:
            self.diagnostics.append(diagnostic)
        self.tracer.event(f"[{kind.value}] {message}", level=level, **evidence)
        return diagnostic

    def of_kind(self, kind):
        with self._lock:
            return [d for d in self.diagnostics if d.kind == kind]

    def snapshot(self):
        with self._lock:
            return list(self.diagnostics)


def _digest(data):
    return hashlib.md5(data).hexdigest()[:8]


def _summarize_array(arr):
    shape = "x".join(str(s) for s in arr.shape)
    # hash content only for small arrays; large ones are identified by shape
    payload = arr.tobytes() if 0 < arr.size < 1000 else str(arr.shape).encode()
    return f"ndarray({arr.dtype},{shape},h={_digest(payload)})"


def _summarize_geometry(geom):
    bounds = ",".join(f"{b:.1f}" for b in geom.bounds)
    return f"{type(geom).__name__}(bounds=[{bounds}])"


def _summarize_model(model):
    if isinstance(model, PixelBuffer):
        return f"PixelBuffer({model.width}x{model.height}x{model.channels})"
    if isinstance(model, Mask):
        return f"Mask({model.entry.color.hex},{model.width}x{model.height},coverage={model.coverage:.3f})"
    if isinstance(model, Palette):
        colors = ",".join(e.color.hex for e in model.entries)
        return f"Palette(size={model.size},[{colors}],fallback={model.fallback})"

    fields = list(type(model).model_fields)[:3]
    return f"{type(model).__name__}(fields={fields}...)"


def _summarize_str(text):
    if len(text) > 50:
        return f"str(len={len(text)},h={_digest(text.encode())})"
    return repr(text)


def _summarize_sequence(seq):
    name = type(seq).__name__
    if not seq:
        return f"{name}(len=0)"
    return f"{name}(len={len(seq)},first={type(seq[0]).__name__})"


def _summarize_dict(mapping):
    keys = ",".join(str(k) for k in list(mapping)[:5])
    return f"dict(len={len(mapping)},keys=[{keys}])"


# checked in order; first matching type wins
SUMMARIZERS = [
    (np.ndarray, _summarize_array),
    (BaseGeometry, _summarize_geometry),
    (BaseModel, _summarize_model),
    (str, _summarize_str),
    (bytes, lambda b: f"bytes(len={len(b)},h={_digest(b)})"),
    ((list, tuple), _summarize_sequence),
    (dict, _summarize_dict),
    ((int, float, np.integer, np.floating), str),
]


def summarize(obj, max_len=200):
    """
    Summarize an object for logging.

    Returns a compact string that never exceeds max_len chars. Arrays,
    geometries and pipeline models are described by shape and identity,
    never dumped.
    """
    if obj is None:
        return "None"

    try:
        result = next(
            (fn(obj) for kind, fn in SUMMARIZERS if isinstance(obj, kind)),
            f"<{type(obj).__name__}>",
        )
    except Exception:
        return f"<{type(obj).__name__}>"

    if len(result) > max_len:
        return result[:max_len - 3] + "..."
    return result


def trace(label=None, arg_names=None):
    """
    Decorator to trace function execution.

    Wraps a function in a span that logs start/end with timing.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not _tracer.config.enabled:
                return func(*args, **kwargs)

            func_module = func.__module__.split(".")[-1] if func.__module__ else ""
            func_name = label or func.__name__

            meta = {}
            if arg_names:
                for name in arg_names:
                    if name in kwargs:
                        meta[name] = kwargs[name]

            with _tracer.span(func_name, module=func_module, **meta):
                return func(*args, **kwargs)

        return wrapper
    return decorator


# Global tracer instance
_tracer = Tracer()


def get_tracer():
    """Get the global tracer instance."""
    return _tracer


def configure_tracer(enabled=False, level="INFO", file_path=None, json_output=False):
    """Configure the global tracer."""
    _tracer.config.configure(
        enabled=enabled,
        level=level,
        file_path=file_path,
        json_output=json_output,
    )
