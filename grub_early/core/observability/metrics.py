from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter

# Resolver counters (per process)
_RESOLVER = Counter()

_PROM_TOKENS = PromCounter(
    "grub_early_tokens_extracted_total",
    "Command tokens extracted from boot scripts",
    ["role"],
)

_PROM_MODULES = PromCounter(
    "grub_early_modules_resolved_total",
    "Modules emitted by requirement resolutions",
    ["stage"],
)

_PROM_FAILURES = PromCounter(
    "grub_early_resolution_failures_total",
    "Requirement resolutions aborted by a fatal condition",
    ["reason"],
)


def reset_metrics() -> None:
    """
    Test helper: clears the in-process counters to avoid cross-test leakage.
    Prometheus counters are monotonic and left alone.
    """
    _RESOLVER.clear()


def inc_tokens(role: str, count: int) -> None:
    r = role or "unknown"
    _RESOLVER["tokens_total"] += int(count)
    _RESOLVER[f"tokens_{r}"] += int(count)
    _PROM_TOKENS.labels(role=r).inc(count)


def inc_modules(stage: str, count: int) -> None:
    _RESOLVER[f"modules_{stage}"] += int(count)
    _PROM_MODULES.labels(stage=stage).inc(count)


def inc_failure(reason: str) -> None:
    _RESOLVER[f"failures_{reason}"] += 1
    _PROM_FAILURES.labels(reason=reason).inc()


def snapshot() -> Dict[str, int]:
    return dict(_RESOLVER)


def inc_named(name: str, value: int = 1) -> None:
    """
    Increment a named counter (used by health endpoints, etc.).
    """
    if not name:
        return
    _RESOLVER[name] += int(value)
