"""
Cost Aggregator: replaying the event log into a cost ledger.

Nothing here is stored: a ledger is a pure function of the log lines, so the
same log always produces the same numbers. Three kinds of cost appear:

- ``result`` events with ``total_cost_usd`` are cumulative per conversation.
  When the value drops, the conversation was reset, and the previous total is
  folded into ``accumulated`` before tracking resumes.
- ``result`` events with only ``cost_usd`` are flat per-invocation costs.
- ``assistant`` events of the lead (instance id ``main``) carry token usage,
  priced from MODEL_PRICING.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

MAIN_INSTANCE_ID = "main"

# Dollars per million tokens.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "opus": {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.50},
    "sonnet": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.30},
    "haiku": {"input": 0.80, "output": 4.0, "cache_write": 1.0, "cache_read": 0.08},
}

_USAGE_RATES = (
    ("input_tokens", "input"),
    ("output_tokens", "output"),
    ("cache_creation_input_tokens", "cache_write"),
    ("cache_read_input_tokens", "cache_read"),
)


def model_family(model_name: Optional[str]) -> Optional[str]:
    if not model_name:
        return None
    lowered = model_name.lower()
    for family in MODEL_PRICING:
        if family in lowered:
            return family
    return None


def price_usage(usage: Optional[dict[str, Any]], model_name: Optional[str]) -> float:
    """Price one usage block. Unknown models and missing usage cost nothing."""
    family = model_family(model_name)
    if family is None or not usage:
        return 0.0
    pricing = MODEL_PRICING[family]
    cost = 0.0
    for usage_key, rate_key in _USAGE_RATES:
        tokens = usage.get(usage_key)
        if isinstance(tokens, (int, float)):
            cost += (tokens / 1_000_000.0) * pricing[rate_key]
    return cost


@dataclass
class InstanceCost:
    """Running cost counters for one instance."""
    accumulated: float = 0.0
    last_seen: float = 0.0
    flat: float = 0.0

    @property
    def total(self) -> float:
        return self.accumulated + self.last_seen + self.flat

    def observe_cumulative(self, value: float) -> None:
        if value < self.last_seen:
            self.accumulated += self.last_seen
        self.last_seen = value


@dataclass
class CostLedger:
    instances: dict[str, InstanceCost] = field(default_factory=dict)
    instances_with_cost: set[str] = field(default_factory=set)

    @property
    def total(self) -> float:
        return sum(cost.total for cost in self.instances.values())

    def for_instance(self, name: str) -> InstanceCost:
        return self.instances.setdefault(name, InstanceCost())


@dataclass
class CostSummary:
    total_cost: float = 0.0
    instances_with_cost: set[str] = field(default_factory=set)


@dataclass
class HierarchyNode:
    """One instance in the call tree, with what it cost."""
    name: str
    id: Optional[str] = None
    cost: float = 0.0
    calls: int = 0
    called_by: set[str] = field(default_factory=set)
    calls_to: set[str] = field(default_factory=set)
    has_cost_data: bool = False


def _parse(line: str) -> Optional[dict[str, Any]]:
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _instance_key(entry: dict[str, Any]) -> str:
    return str(entry.get("instance") or entry.get("instance_id") or "unknown")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _apply(ledger: CostLedger, entry: dict[str, Any]) -> bool:
    """Fold one entry into the ledger; True when it carried cost data."""
    name = _instance_key(entry)
    event = entry.get("event")
    if not isinstance(event, dict):
        return False
    event_type = event.get("type")

    if entry.get("instance_id") == MAIN_INSTANCE_ID and event_type == "assistant":
        message = event.get("message") or {}
        if not isinstance(message, dict):
            return False
        token_cost = price_usage(message.get("usage"), message.get("model"))
        if token_cost > 0:
            ledger.for_instance(name).flat += token_cost
            ledger.instances_with_cost.add(name)
            return True
        return False

    if event_type != "result":
        return False

    cumulative = _number(event.get("total_cost_usd"))
    if cumulative is not None:
        ledger.for_instance(name).observe_cumulative(cumulative)
        ledger.instances_with_cost.add(name)
        return True

    flat = _number(event.get("cost_usd"))
    if flat is not None:
        ledger.for_instance(name).flat += flat
        ledger.instances_with_cost.add(name)
        return True
    return False


def replay(lines: Iterable[str]) -> CostLedger:
    """Build a ledger from event log lines, skipping anything unparseable."""
    ledger = CostLedger()
    skipped = 0
    for line in lines:
        entry = _parse(line)
        if entry is None:
            skipped += bool(line.strip())
            continue
        _apply(ledger, entry)
    if skipped:
        logger.debug("costs.skipped_lines", count=skipped)
    return ledger


def replay_file(path: Path) -> CostLedger:
    path = Path(path)
    if not path.exists():
        return CostLedger()
    with open(path, encoding="utf-8") as f:
        return replay(f)


def calculate_total_cost(path: Path) -> CostSummary:
    """Total swarm cost for an event log. A missing file costs zero."""
    ledger = replay_file(path)
    return CostSummary(total_cost=ledger.total, instances_with_cost=set(ledger.instances_with_cost))


def parse_instance_hierarchy(path: Path) -> dict[str, HierarchyNode]:
    """Per-instance call counts, costs and caller/callee relationships."""
    path = Path(path)
    nodes: dict[str, HierarchyNode] = {}
    if not path.exists():
        return nodes

    ledger = CostLedger()
    with open(path, encoding="utf-8") as f:
        for line in f:
            entry = _parse(line)
            if entry is None:
                continue
            name = _instance_key(entry)
            node = nodes.setdefault(name, HierarchyNode(name=name, id=entry.get("instance_id")))

            caller = entry.get("calling_instance")
            if caller and caller != name:
                node.called_by.add(caller)
                parent = nodes.setdefault(
                    caller, HierarchyNode(name=caller, id=entry.get("calling_instance_id"))
                )
                parent.calls_to.add(name)

            event = entry.get("event") if isinstance(entry.get("event"), dict) else {}
            has_cost = _apply(ledger, entry)
            if event.get("type") == "result" or has_cost:
                node.calls += 1
            if has_cost:
                node.has_cost_data = True

    for name, cost in ledger.instances.items():
        if name in nodes:
            nodes[name].cost = cost.total
    return nodes
