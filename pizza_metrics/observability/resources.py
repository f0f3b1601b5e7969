from __future__ import annotations

from typing import Protocol

import psutil

from pizza_metrics.observability.errors import SamplingError


def sample_cpu_percent() -> float:
    """1-minute load average per logical core, as a percentage.

    Not capped at 100: a saturated multi-core host legitimately reports more.
    """

    try:
        load_1m = psutil.getloadavg()[0]
        cores = psutil.cpu_count(logical=True) or 1
    except (OSError, psutil.Error) as exc:
        raise SamplingError("cpu", exc) from exc
    return round(max(load_1m, 0.0) / cores * 100.0, 2)


def sample_memory_percent() -> float:
    try:
        vm = psutil.virtual_memory()
    except (OSError, psutil.Error) as exc:
        raise SamplingError("memory", exc) from exc
    if not vm.total:
        raise SamplingError("memory")
    # `available` is what the kernel would hand out without swapping.
    return round((vm.total - vm.available) / vm.total * 100.0, 2)


class Sampler(Protocol):
    def cpu_percent(self) -> float: ...

    def memory_percent(self) -> float: ...


class ResourceSampler:
    """Bundles the two host readings so the exporter can be given a fake."""

    def cpu_percent(self) -> float:
        return sample_cpu_percent()

    def memory_percent(self) -> float:
        return sample_memory_percent()
