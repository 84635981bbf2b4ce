"""
APPROVAL_ENGINE_TRACE -- debug trace around pure engine calls.

``@traced_engine`` records which engine ran, at which version, on which
inputs (as a short SHA-256 fingerprint) and for how long.  The engines
stay pure: the only side effect is one DEBUG record on
``approval_kernel.engines.tracer``, which the kernel's JSON formatter
picks up because it lives under the ``approval_kernel`` logger tree.

    @traced_engine("approval_gate", "1.0", fingerprint_fields=("target_step_id",))
    def can_act(steps, target_step_id, principal):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

_logger = logging.getLogger("approval_kernel.engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    # Step states and definitions are frozen dataclasses whose repr is
    # stable, so the str() fallback fingerprints them deterministically.
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{k}:{_canonicalize(value[k])}" for k in sorted(value)
        ) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(map(_canonicalize, value))) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonicalize, value)) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Hash the named arguments; an absent argument hashes as ``null``."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Wrap an engine function so each call emits APPROVAL_ENGINE_TRACE.

    ``fingerprint_fields`` names parameters of the wrapped function.  They
    are bound against its signature, so positional and keyword calls with
    the same inputs produce the same fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)
        base_record = {
            "trace_type": "APPROVAL_ENGINE_TRACE",
            "engine_name": engine_name,
            "engine_version": engine_version,
            "function": func.__qualname__,
        }

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                arguments = signature.bind_partial(*args, **kwargs).arguments
                fingerprint = compute_input_fingerprint(fingerprint_fields, arguments)

            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = (time.monotonic() - started) * 1000

            _logger.debug(
                "APPROVAL_ENGINE_TRACE",
                extra={
                    **base_record,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
            return result

        return wrapper

    return decorator
