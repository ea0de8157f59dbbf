# secret_store.py
from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Dict, Iterable, Iterator

REDACTED = "***"


class Secrets(Mapping):
    """
    Read-only secret store.

    Values are only reachable through `${{ secrets.NAME }}`; everything the
    console prints goes through redact() first.
    """

    def __init__(self, values: Mapping[str, str] | None = None):
        self._values: Dict[str, str] = {str(k): str(v) for k, v in (values or {}).items()}

    @classmethod
    def from_specs(cls, specs: Iterable[str], environ: Mapping[str, str] | None = None) -> "Secrets":
        """
        Build from CLI-style specs:
          NAME=VALUE  -> literal value
          NAME        -> value of the environment variable NAME
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, str] = {}
        for spec in specs:
            if "=" in spec:
                name, value = spec.split("=", 1)
                values[name] = value
            elif spec in environ:
                values[spec] = environ[spec]
            else:
                raise KeyError(f"secret '{spec}' is not set in the environment")
        return cls(values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Secrets({sorted(self._values)})"

    def redact(self, text: str) -> str:
        # Longest first, so a secret containing another is fully masked.
        for value in sorted(self._values.values(), key=len, reverse=True):
            if value:
                text = text.replace(value, REDACTED)
        return text
