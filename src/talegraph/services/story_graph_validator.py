"""Static checks for a chapter's story graph."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from talegraph.domain.conditions import check_condition_syntax
from talegraph.domain.models import StoryNode
from talegraph.services.navigator import is_continue_choice

Severity = str


@dataclass(frozen=True, slots=True)
class Issue:
    severity: Severity
    code: str
    message: str
    context: dict[str, str]


@dataclass(frozen=True, slots=True)
class NodeLinks:
    """Resolved outgoing edges of one node."""

    node_id: str
    next_id: str | None
    choice_targets: list[str]
    auto_advances: bool


def format_issue(issue: Issue) -> str:
    details = " ".join(f"{key}={value}" for key, value in issue.context.items())
    return f"[{issue.severity}] {issue.code}: {issue.message}" + (f" ({details})" if details else "")


def is_error(issue: Issue) -> bool:
    return issue.severity == "ERROR"


def _issue(severity: Severity, code: str, message: str, **context: str) -> Issue:
    return Issue(severity=severity, code=code, message=message, context=context)


def validate_chapter_graph(
    nodes: Sequence[StoryNode],
    entry_node_ids: Sequence[str] | None = None,
    *,
    known_node_ids: Iterable[str] = (),
    error_on_autoadvance_cycle: bool = False,
) -> list[Issue]:
    """Validate one chapter.

    ``entry_node_ids`` defaults to the first node by order. Links are
    resolved the way the navigator resolves them: exact id, the id prefixed
    with the node's chapter, then case-insensitive and suffix matches.
    ``known_node_ids`` are ids stored in other chapters; links to them are
    not reported as missing.
    """
    found: list[Issue] = []
    by_id: dict[str, StoryNode] = {}
    for node in sorted(nodes, key=lambda item: item.order_index):
        if node.id in by_id:
            found.append(
                _issue("ERROR", "DUPLICATE_NODE_ID", "Duplicate story node id detected.", node_id=node.id)
            )
        else:
            by_id[node.id] = node

    local_ids = set(by_id)
    external_ids = set(known_node_ids) - local_ids
    links = {node_id: _resolve_links(node, local_ids, external_ids, found) for node_id, node in by_id.items()}
    for node in by_id.values():
        found.extend(_condition_issues(node))

    if entry_node_ids is None:
        entry_node_ids = list(by_id)[:1]
    roots = [entry for entry in entry_node_ids if entry in local_ids]
    for entry in entry_node_ids:
        if entry not in local_ids:
            found.append(
                _issue(
                    "ERROR",
                    "MISSING_ENTRY_ROOT",
                    "Entry root references missing story node.",
                    referenced_id=entry,
                )
            )

    for node_id in sorted(local_ids - _reachable_from(links, roots)):
        found.append(
            _issue("WARN", "UNREACHABLE_NODE", "Node is unreachable from the chapter entry.", node_id=node_id)
        )

    severity = "ERROR" if error_on_autoadvance_cycle else "WARN"
    for cycle in _auto_advance_cycles(links):
        path = " -> ".join(cycle + cycle[:1])
        found.append(_issue(severity, "AUTOADVANCE_CYCLE", "Auto-advance cycle detected.", cycle=path))
    return found


def resolve_reference(target: str, chapter_id: str, node_ids: set[str]) -> str | None:
    """Return the id ``target`` resolves to within ``node_ids``, or None."""
    target = target.strip()
    if not target:
        return None
    if target in node_ids:
        return target
    namespaced = f"{chapter_id}_{target}"
    if namespaced in node_ids:
        return namespaced
    lowered = target.lower()
    ordered = sorted(node_ids)
    for matches in (
        lambda node_id: node_id == lowered,
        lambda node_id: node_id.endswith(f"_{lowered}"),
        lambda node_id: node_id.endswith(lowered),
    ):
        for node_id in ordered:
            if matches(node_id.lower()):
                return node_id
    return None


def _resolve_links(
    node: StoryNode,
    local_ids: set[str],
    external_ids: set[str],
    found: list[Issue],
) -> NodeLinks:
    def follow(target: str | None, field_path: str, message: str) -> str | None:
        if not target or not target.strip():
            return None
        resolved = resolve_reference(target, node.chapter_id, local_ids)
        if resolved is None and resolve_reference(target, node.chapter_id, external_ids) is None:
            found.append(
                _issue(
                    "ERROR",
                    "MISSING_NODE_REF",
                    message,
                    node_id=node.id,
                    field_path=field_path,
                    referenced_id=target,
                )
            )
        return resolved

    next_id = follow(node.next_id, "next_id", "Node references missing next node.")
    follow(node.prev_id, "prev_id", "Node references missing previous node.")
    targets: list[str] = []
    for index, choice in enumerate(node.choices):
        # Chapter-only jumps have an empty node target and add no edge.
        resolved = follow(
            choice.target_node_id,
            f"choices[{index}].target_node_id",
            "Choice references missing node.",
        )
        if resolved is not None:
            targets.append(resolved)
    visible = any(not is_continue_choice(choice) for choice in node.choices)
    return NodeLinks(
        node_id=node.id,
        next_id=next_id,
        choice_targets=targets,
        auto_advances=bool(next_id) and not visible,
    )


def _condition_issues(node: StoryNode) -> list[Issue]:
    expressions = [("ending_condition", node.ending_condition)]
    expressions += [(f"choices[{index}].condition", choice.condition) for index, choice in enumerate(node.choices)]
    result: list[Issue] = []
    for field_path, expression in expressions:
        error = check_condition_syntax(expression)
        if error is not None:
            result.append(
                _issue(
                    "ERROR",
                    "INVALID_CONDITION",
                    f"Condition does not parse: {error}",
                    node_id=node.id,
                    field_path=field_path,
                )
            )
    return result


def _reachable_from(links: Mapping[str, NodeLinks], roots: Sequence[str]) -> set[str]:
    seen: set[str] = set()
    pending = list(roots)
    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)
        edges = links[current]
        pending.extend(edges.choice_targets)
        if edges.next_id:
            pending.append(edges.next_id)
    return seen


def _auto_advance_cycles(links: Mapping[str, NodeLinks]) -> list[list[str]]:
    """Return loops made only of nodes that advance by ``next_id`` without offering a choice."""
    successor = {
        node_id: edges.next_id
        for node_id, edges in links.items()
        if edges.auto_advances and edges.next_id in links and links[edges.next_id].auto_advances
    }
    cycles: list[list[str]] = []
    finished: set[str] = set()
    # Each node has at most one successor, so following the chain finds every loop.
    for start in sorted(successor):
        path: list[str] = []
        current: str | None = start
        while current is not None and current not in finished and current not in path:
            path.append(current)
            current = successor.get(current)
        if current is not None and current in path:
            cycles.append(path[path.index(current) :])
        finished.update(path)
    return cycles
