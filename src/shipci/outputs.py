# outputs.py
from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Dict, Mapping, Tuple

from .errors import ShipCIError


class StalePublish(ShipCIError):
    """publish() was called with an expected version that is no longer current."""


class OutputContext:
    """
    Run-scoped store of job outputs, keyed by (job name, output key).

    Writes happen only through publish(), which installs a job's whole
    output set at once under a lock and bumps the version. Readers take
    snapshot(), an immutable copy, so a value published later never changes
    what an already-evaluated condition saw.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[Tuple[str, str], str] = {}
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def publish(
        self,
        job: str,
        outputs: Mapping[str, str],
        *,
        expected_version: int | None = None,
    ) -> int:
        """
        Atomically publish every output of `job`. Returns the new version.

        If expected_version is given and another publish happened in the
        meantime, nothing is written and StalePublish is raised.
        """
        with self._lock:
            if expected_version is not None and expected_version != self._version:
                raise StalePublish(
                    f"OutputContext moved from version {expected_version} to {self._version} "
                    f"before job '{job}' published"
                )
            for key, value in outputs.items():
                self._values[(job, str(key))] = "" if value is None else str(value)
            self._version += 1
            return self._version

    def get(self, job: str, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get((job, key), default)

    def snapshot(self) -> Mapping[str, Mapping[str, str]]:
        """Immutable view: {job: {key: value}} as of now."""
        with self._lock:
            grouped: Dict[str, Dict[str, str]] = {}
            for (job, key), value in self._values.items():
                grouped.setdefault(job, {})[key] = value
        return MappingProxyType({job: MappingProxyType(vals) for job, vals in grouped.items()})
