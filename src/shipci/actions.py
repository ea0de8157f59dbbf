# actions.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ShipCIError

# ---------------------------------------------------------------------
# Action interface
# ---------------------------------------------------------------------
# Every `uses:` step is an opaque call:
#
#   invoke(ref, inputs) -> ActionResult(exit_status, outputs)
#
# An action is any callable taking (inputs, env). It may return an
# ActionResult, a mapping of outputs (exit 0), an int exit status, or None.
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class ActionResult:
    exit_status: int = 0
    outputs: Dict[str, str] = field(default_factory=dict)


Action = Callable[[Dict[str, str], Dict[str, str]], Any]


class UnknownAction(ShipCIError):
    def __init__(self, ref: str):
        super().__init__(f"no action registered for '{ref}'")
        self.ref = ref


def _strip_version(ref: str) -> str:
    return ref.split("@", 1)[0]


def _normalize(ref: str, result: Any) -> ActionResult:
    if isinstance(result, ActionResult):
        return result
    if result is None:
        return ActionResult()
    if isinstance(result, bool):
        return ActionResult(exit_status=0 if result else 1)
    if isinstance(result, int):
        return ActionResult(exit_status=result)
    if isinstance(result, Mapping):
        return ActionResult(outputs={str(k): "" if v is None else str(v) for k, v in result.items()})
    raise TypeError(f"action '{ref}' returned unsupported value {result!r}")


class ActionRegistry:
    """
    Maps action refs to callables.

    Lookup tries the exact ref first ("actions/checkout@v4"), then the ref
    without its version ("actions/checkout").
    """

    def __init__(self, actions: Optional[Mapping[str, Action]] = None, *, stub_unknown: bool = False):
        self._actions: Dict[str, Action] = dict(actions or {})
        self.stub_unknown = stub_unknown

    def register(self, ref: str, fn: Action) -> None:
        self._actions[ref] = fn

    def action(self, ref: str):
        """Decorator form of register()."""
        def deco(fn: Action) -> Action:
            self.register(ref, fn)
            return fn
        return deco

    def resolve(self, ref: str) -> Optional[Action]:
        return self._actions.get(ref) or self._actions.get(_strip_version(ref))

    def __contains__(self, ref: str) -> bool:
        return self.resolve(ref) is not None

    def invoke(self, ref: str, inputs: Mapping[str, str], env: Optional[Mapping[str, str]] = None) -> ActionResult:
        fn = self.resolve(ref)
        if fn is None:
            if self.stub_unknown:
                return ActionResult()
            raise UnknownAction(ref)
        return _normalize(ref, fn(dict(inputs), dict(env or {})))


def load_actions(path: str | Path, registry: ActionRegistry) -> ActionRegistry:
    """
    Load actions from a python file path into `registry`.

    The file must define either:
      - register(registry) -> None
      - ACTIONS = {ref: callable, ...}
    """
    actions_path = Path(path).expanduser().resolve()
    if not actions_path.exists():
        raise FileNotFoundError(f"Actions file not found: {actions_path}")
    if actions_path.suffix != ".py":
        raise ValueError(f"Actions must be a .py file, got: {actions_path.name}")

    globals_dict = runpy.run_path(str(actions_path), run_name=f"shipci_actions_{actions_path.stem}")

    if "register" in globals_dict and callable(globals_dict["register"]):
        globals_dict["register"](registry)
    elif isinstance(globals_dict.get("ACTIONS"), Mapping):
        for ref, fn in globals_dict["ACTIONS"].items():
            registry.register(ref, fn)
    else:
        raise TypeError(
            "Actions file must define register(registry) or ACTIONS = {ref: callable}."
        )
    return registry
