from __future__ import annotations

import heapq
import itertools
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from math import inf

from .cancellation import CancellationToken, checkpoint

NodeId = Hashable
# node -> iterable of (neighbor, edge cost, edge tag)
NeighborsFn = Callable[[NodeId], Iterable[tuple[NodeId, float, object]]]
HeuristicFn = Callable[[NodeId], float]


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[NodeId, ...]
    edges: tuple[object, ...]
    cost: float
    explored: int
    reopened: int = 0


class PathNotFoundError(ValueError):
    pass


def astar_search(
    *,
    start: NodeId,
    goal: NodeId,
    neighbors: NeighborsFn,
    heuristic: HeuristicFn,
    cancel: CancellationToken | None = None,
) -> PathResult:
    """Best-first search on f = g + h with a binary heap and lazy deletion.

    A node is finalized the first time it is popped with its current g. If a
    strictly cheaper g turns up later the node is reopened, so an inconsistent
    heuristic costs extra pops rather than a worse path.
    """
    if start == goal:
        return PathResult(nodes=(start,), edges=(), cost=0.0, explored=0)

    tie = itertools.count()
    g_score: dict[NodeId, float] = {start: 0.0}
    came_from: dict[NodeId, tuple[NodeId, object]] = {}
    closed: set[NodeId] = set()
    heap: list[tuple[float, int, float, NodeId]] = [(heuristic(start), next(tie), 0.0, start)]
    explored = 0
    reopened = 0

    while heap:
        checkpoint(cancel, "search")
        _, _, g_at_push, node = heapq.heappop(heap)
        if g_at_push > g_score.get(node, inf):
            continue  # stale entry
        if node in closed:
            continue
        closed.add(node)
        explored += 1
        if node == goal:
            break
        for nxt, edge_cost, tag in neighbors(node):
            tentative = g_at_push + max(0.0, float(edge_cost))
            if tentative >= g_score.get(nxt, inf):
                continue
            g_score[nxt] = tentative
            came_from[nxt] = (node, tag)
            if nxt in closed:
                closed.discard(nxt)
                reopened += 1
            heapq.heappush(heap, (tentative + heuristic(nxt), next(tie), tentative, nxt))
    else:
        raise PathNotFoundError("open set exhausted before reaching goal")

    nodes: list[NodeId] = [goal]
    edges: list[object] = []
    at = goal
    while at != start:
        prev, tag = came_from[at]
        nodes.append(prev)
        edges.append(tag)
        at = prev
    nodes.reverse()
    edges.reverse()
    return PathResult(
        nodes=tuple(nodes),
        edges=tuple(edges),
        cost=g_score[goal],
        explored=explored,
        reopened=reopened,
    )
