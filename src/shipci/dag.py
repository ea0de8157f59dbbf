from __future__ import annotations

from collections import deque
from typing import Dict, List, Set, Tuple

from .errors import DefinitionError
from .model import Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job templates.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must finish BEFORE this job)

    Returns (adj, indeg) where adj maps a job to the jobs that need it.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DefinitionError("Duplicate job names found", {"jobs": dupes})

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for need in job.needs or []:
            if need not in name_set:
                raise DefinitionError(
                    f"Job '{job.name}' needs missing job '{need}'",
                    {"known_jobs": sorted(name_set)},
                )
            if need == job.name:
                raise DefinitionError(f"Job '{job.name}' needs itself")
            # Edge need -> job.name (need must finish before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Jobs within one stage have no dependency on each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise DefinitionError("Job graph has a cycle in 'needs'", {"stuck_jobs": remaining})

    return levels

