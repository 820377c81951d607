"""Dependency graph over issues and epics.

Edges come from the ``blocking_issues`` field, from relation phrases in
descriptions ("depends on #12", "blocked by epic-3", ...) and from
"mentioned in #N" notes. Nodes are keyed ``issue-<iid>`` / ``epic-<id>`` and
the graph is a plain adjacency map of those keys.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field

from pm_app.core.labels import initiative_of
from pm_app.core.models import Epic, Issue, Snapshot

_TOKEN = r"(#\d+|epic-\d+|story-\d+)"

TEXT_PATTERNS: Sequence[tuple[re.Pattern, str]] = (
    (re.compile(rf"\bdepends on:?\s*{_TOKEN}", re.IGNORECASE), "depends_on"),
    (re.compile(rf"\bblocked by:?\s*{_TOKEN}", re.IGNORECASE), "blocked_by"),
    (re.compile(rf"\bblocks:?\s*{_TOKEN}", re.IGNORECASE), "blocks"),
    (re.compile(rf"\brequired for:?\s*{_TOKEN}", re.IGNORECASE), "required_for"),
)
MENTION_PATTERN = re.compile(r"mentioned in (#\d+)", re.IGNORECASE)

# Relations that order work; "related" mentions are informational only.
ORDERING_RELATIONS = frozenset({"depends_on", "blocked_by", "blocks", "required_for"})
WAITING_RELATIONS = frozenset({"depends_on", "blocked_by"})

LEVEL_FILTERS = {
    "all": None,
    "initiative": frozenset({"initiative"}),
    "epic": frozenset({"epic", "epic-child"}),
    "story": frozenset({"story"}),
}


@dataclass(slots=True, frozen=True)
class DependencyEdge:
    source: str
    target: str
    relation: str
    level: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class DependencyGraph:
    nodes: dict[str, dict] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)
    adjacency: dict[str, list[str]] = field(default_factory=dict, repr=False)

    def out_edges(self, node_id: str) -> list[DependencyEdge]:
        return [e for e in self.edges if e.source == node_id]


@dataclass(slots=True)
class DependencyAnalysis:
    level: str = "all"
    nodes: dict[str, dict] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    critical_path: list[str] = field(default_factory=list)
    blocked: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "nodes": list(self.nodes.values()),
            "edges": [e.to_dict() for e in self.edges],
            "cycles": [list(c) for c in self.cycles],
            "critical_path": list(self.critical_path),
            "blocked": list(self.blocked),
        }


def issue_node(iid: int) -> str:
    return f"issue-{iid}"


def epic_node(epic_id: int) -> str:
    return f"epic-{epic_id}"


def normalize_token(token: str) -> str:
    """``#12`` and ``story-12`` name issue 12; ``epic-3`` names epic 3."""
    token = token.strip().lower()
    if token.startswith("#"):
        return issue_node(int(token[1:]))
    kind, _, number = token.partition("-")
    if kind == "epic":
        return epic_node(int(number))
    return issue_node(int(number))


def issue_level(issue: Issue) -> str:
    if initiative_of(issue.labels):
        return "initiative"
    if issue.epic_id is not None:
        return "epic-child"
    return "story"


def epic_level(epic: Epic) -> str:
    return "initiative" if initiative_of(epic.labels) else "epic"


def text_references(text: str | None) -> list[tuple[str, str]]:
    """``(relation, node_id)`` pairs mined from free text, in pattern order."""
    if not text:
        return []
    found = []
    for pattern, relation in TEXT_PATTERNS:
        for match in pattern.finditer(text):
            found.append((relation, normalize_token(match.group(1))))
    return found


def mention_references(notes: Iterable[str]) -> list[str]:
    found = []
    for body in notes:
        for match in MENTION_PATTERN.finditer(body or ""):
            found.append(normalize_token(match.group(1)))
    return found


def build_graph(issues: Sequence[Issue], epics: Sequence[Epic] = ()) -> DependencyGraph:
    """Nodes for every issue and epic plus the edges between them.

    Edges pointing outside the node set, self edges and exact duplicates are
    dropped. Each edge takes the level of its source node.
    """
    graph = DependencyGraph()
    for issue in issues:
        node_id = issue_node(issue.iid)
        graph.nodes[node_id] = {
            "id": node_id,
            "kind": "issue",
            "ref": issue.iid,
            "title": issue.title,
            "state": issue.state,
            "level": issue_level(issue),
        }
    for epic in epics:
        node_id = epic_node(epic.id)
        graph.nodes[node_id] = {
            "id": node_id,
            "kind": "epic",
            "ref": epic.id,
            "title": epic.title,
            "state": epic.state,
            "level": epic_level(epic),
        }
    graph.adjacency = {node_id: [] for node_id in graph.nodes}

    seen: set[tuple[str, str, str]] = set()

    def add(source: str, target: str, relation: str) -> None:
        if source == target or target not in graph.nodes:
            return
        key = (source, target, relation)
        if key in seen:
            return
        seen.add(key)
        graph.edges.append(DependencyEdge(source, target, relation, graph.nodes[source]["level"]))
        if relation in ORDERING_RELATIONS and target not in graph.adjacency[source]:
            graph.adjacency[source].append(target)

    for issue in issues:
        source = issue_node(issue.iid)
        for iid in issue.blocking_issues:
            add(source, issue_node(iid), "blocks")
        for relation, target in text_references(issue.description):
            add(source, target, relation)
        for target in mention_references(issue.notes):
            add(source, target, "related")
    for epic in epics:
        source = epic_node(epic.id)
        for relation, target in text_references(epic.description):
            add(source, target, relation)
    return graph


def _canonical(cycle: Sequence[str]) -> tuple[str, ...]:
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:]) + tuple(cycle[:pivot])


def _dfs(graph: DependencyGraph) -> tuple[list[list[str]], set[tuple[str, str]]]:
    """Cycles (stack slices at each back edge) and the back edges themselves.

    Walks with an explicit stack of (node, neighbour iterator) frames.
    """
    cycles: list[list[str]] = []
    reported: set[tuple[str, ...]] = set()
    back_edges: set[tuple[str, str]] = set()
    visited: set[str] = set()
    path: list[str] = []
    on_path: set[str] = set()

    for root in graph.adjacency:
        if root in visited:
            continue
        visited.add(root)
        path.append(root)
        on_path.add(root)
        frames = [(root, iter(graph.adjacency.get(root, [])))]
        while frames:
            node, neighbours = frames[-1]
            nxt = next(neighbours, None)
            if nxt is None:
                frames.pop()
                path.pop()
                on_path.discard(node)
                continue
            if nxt in on_path:
                back_edges.add((node, nxt))
                cycle = path[path.index(nxt):]
                key = _canonical(cycle)
                if key not in reported:
                    reported.add(key)
                    cycles.append(list(cycle))
            elif nxt not in visited:
                visited.add(nxt)
                path.append(nxt)
                on_path.add(nxt)
                frames.append((nxt, iter(graph.adjacency.get(nxt, []))))
    return cycles, back_edges


def find_cycles(graph: DependencyGraph) -> list[list[str]]:
    return _dfs(graph)[0]


def critical_path(graph: DependencyGraph) -> list[str]:
    """Longest chain (unit length per edge) starting at a node with no incoming edges.

    Back edges found by the cycle search are ignored so the relaxation always
    terminates. Equal lengths keep the chain discovered first. A graph with no
    ordering edges has no critical path.
    """
    _, back_edges = _dfs(graph)
    adjacency = {
        node: [nxt for nxt in targets if (node, nxt) not in back_edges]
        for node, targets in graph.adjacency.items()
    }
    in_degree = {node: 0 for node in adjacency}
    for targets in adjacency.values():
        for nxt in targets:
            in_degree[nxt] += 1

    best: list[str] = []
    for source in adjacency:
        if in_degree[source] != 0:
            continue
        dist = {source: 0}
        parent: dict[str, str] = {}
        queue = deque([source])
        while queue:
            node = queue.popleft()
            for nxt in adjacency[node]:
                if dist[node] + 1 > dist.get(nxt, -1):
                    dist[nxt] = dist[node] + 1
                    parent[nxt] = node
                    queue.append(nxt)
        far = source
        for node, d in dist.items():
            if d > dist[far]:
                far = node
        if dist[far] == 0:
            continue
        path = [far]
        while path[-1] != source:
            path.append(parent[path[-1]])
        path.reverse()
        if len(path) > len(best):
            best = path
    return best


def filter_edges(edges: Sequence[DependencyEdge], level: str = "all") -> list[DependencyEdge]:
    wanted = LEVEL_FILTERS[level]
    if wanted is None:
        return list(edges)
    return [e for e in edges if e.level in wanted]


def blocked_issues(graph: DependencyGraph, issues: Sequence[Issue]) -> list[dict]:
    """Open issues still waiting on open work, most severe first.

    Severity is high with three or more open dependencies, medium otherwise.
    Impact weighs issues this one holds up twice as much as its own waits.
    """
    by_node = {issue_node(i.iid): i for i in issues}
    waits: dict[str, list[str]] = {}
    for edge in graph.edges:
        if edge.relation in WAITING_RELATIONS and edge.target in by_node:
            waits.setdefault(edge.source, []).append(edge.target)
    held_by: dict[str, set[str]] = {}
    for source, targets in waits.items():
        for target in targets:
            held_by.setdefault(target, set()).add(source)

    out = []
    for node_id, targets in waits.items():
        issue = by_node.get(node_id)
        if issue is None or issue.is_closed:
            continue
        open_deps = sorted({t for t in targets if by_node[t].is_open}, key=lambda t: by_node[t].iid)
        if not open_deps:
            continue
        holding = sorted(by_node[other].iid for other in held_by.get(node_id, ()) if other in by_node)
        out.append(
            {
                "iid": issue.iid,
                "title": issue.title,
                "blocked_by": [by_node[t].iid for t in open_deps],
                "blocks": holding,
                "severity": "high" if len(open_deps) >= 3 else "medium",
                "impact": len(open_deps) * 10 + len(holding) * 20,
            }
        )
    out.sort(key=lambda b: (b["severity"] != "high", -b["impact"], b["iid"]))
    return out


def analyze_dependencies(snapshot: Snapshot, level: str = "all") -> DependencyAnalysis:
    """Build the graph and run cycle, critical-path and blocked-issue analyses.

    Parameters
    ----------
    snapshot : Snapshot
        Issues and epics to connect.
    level : str
        One of ``all``, ``initiative``, ``epic``, ``story``. Only the returned
        edges are filtered; cycles and the critical path always use the full
        graph.

    Returns
    -------
    DependencyAnalysis
        Empty but well formed when the snapshot has no issues or epics.
    """
    if level not in LEVEL_FILTERS:
        raise ValueError(f"Unknown dependency level {level!r}")
    if not snapshot.issues and not snapshot.epics:
        return DependencyAnalysis(level=level)
    graph = build_graph(snapshot.issues, snapshot.epics)
    return DependencyAnalysis(
        level=level,
        nodes=graph.nodes,
        edges=filter_edges(graph.edges, level),
        cycles=find_cycles(graph),
        critical_path=critical_path(graph),
        blocked=blocked_issues(graph, snapshot.issues),
    )
