# trigger.py
# Decides whether an incoming event starts a pipeline run, and parses the
# event into the context that job conditions read.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

from .model import Event

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class TriggerFilter:
    """
    Ref filters for one event kind.

    Empty lists mean "not configured". Patterns use glob syntax:
    `*` matches within one path segment, `**` across segments,
    a leading `!` negates a previous match.
    """
    branches: List[str] = field(default_factory=list)
    branches_ignore: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    tags_ignore: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TriggerConfig:
    """Event kind -> filter. Kinds not listed never trigger."""
    events: Dict[str, TriggerFilter] = field(default_factory=dict)

    @classmethod
    def any_event(cls) -> "TriggerConfig":
        return cls(events={"push": TriggerFilter(), "pull_request": TriggerFilter()})


@dataclass(frozen=True)
class TriggerContext:
    event_name: str
    ref: str
    sha: str
    is_push: bool
    is_tag_push: bool
    tag_name: Optional[str]
    branch: Optional[str]

    def as_github(self) -> Dict[str, str]:
        """The `github` expression context."""
        ref_type = "tag" if self.ref.startswith(TAG_PREFIX) else "branch"
        return {
            "event_name": self.event_name,
            "ref": self.ref,
            "ref_name": ref_name(self.ref),
            "ref_type": ref_type,
            "sha": self.sha,
        }

    def as_trigger(self) -> Dict[str, object]:
        """The `trigger` expression context."""
        return {
            "is_push": self.is_push,
            "is_tag_push": self.is_tag_push,
            "tag_name": self.tag_name,
            "branch": self.branch,
        }


@dataclass(frozen=True)
class TriggerDecision:
    run: bool
    context: TriggerContext
    reason: str


def ref_name(ref: str) -> str:
    for prefix in (TAG_PREFIX, BRANCH_PREFIX):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


@lru_cache(maxsize=256)
def _glob_to_regex(pattern: str) -> re.Pattern:
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(name: str, patterns: List[str]) -> bool:
    """
    Ordered glob matching: later `!pattern` entries can un-match a name
    matched by an earlier pattern.
    """
    matched = False
    for p in patterns:
        if p.startswith("!"):
            if _glob_to_regex(p[1:]).match(name):
                matched = False
        elif _glob_to_regex(p).match(name):
            matched = True
    return matched


def parse_event(event: Event) -> TriggerContext:
    """Classify an event. Pure; no filters applied."""
    is_push = event.kind == "push"
    is_tag = event.ref.startswith(TAG_PREFIX)
    is_branch = event.ref.startswith(BRANCH_PREFIX)
    return TriggerContext(
        event_name=event.kind,
        ref=event.ref,
        sha=event.sha,
        is_push=is_push,
        is_tag_push=is_push and is_tag,
        tag_name=ref_name(event.ref) if is_tag else None,
        branch=ref_name(event.ref) if is_branch else None,
    )


def _ref_allowed(name: str, include: List[str], ignore: List[str]) -> bool:
    if include:
        return glob_match(name, include)
    if ignore:
        return not glob_match(name, ignore)
    return True


def evaluate(config: TriggerConfig, event: Event) -> TriggerDecision:
    """Return whether `event` starts a run, plus the parsed trigger context."""
    context = parse_event(event)
    filt = config.events.get(event.kind)
    if filt is None:
        return TriggerDecision(False, context, f"event '{event.kind}' is not a configured trigger")

    has_branch_filter = bool(filt.branches or filt.branches_ignore)
    has_tag_filter = bool(filt.tags or filt.tags_ignore)

    if event.kind == "pull_request":
        base = ref_name(event.base_ref or event.ref)
        if has_branch_filter and not _ref_allowed(base, filt.branches, filt.branches_ignore):
            return TriggerDecision(False, context, f"base branch '{base}' does not match branch filters")
        return TriggerDecision(True, context, "pull_request matched")

    if event.kind != "push" or not (has_branch_filter or has_tag_filter):
        return TriggerDecision(True, context, f"{event.kind} matched (no ref filters)")

    name = ref_name(event.ref)
    if context.tag_name is not None:
        if not has_tag_filter:
            return TriggerDecision(False, context, "tag pushes are not configured")
        ok = _ref_allowed(name, filt.tags, filt.tags_ignore)
        kind = "tag"
    else:
        if not has_branch_filter:
            return TriggerDecision(False, context, "branch pushes are not configured")
        ok = _ref_allowed(name, filt.branches, filt.branches_ignore)
        kind = "branch"

    if not ok:
        return TriggerDecision(False, context, f"{kind} '{name}' does not match {kind} filters")
    return TriggerDecision(True, context, f"{kind} '{name}' matched")
