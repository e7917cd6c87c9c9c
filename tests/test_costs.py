"""
Tests for swarmrun.costs: replaying the event log into totals and a call tree.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from swarmrun.costs import (
    InstanceCost,
    calculate_total_cost,
    parse_instance_hierarchy,
    price_usage,
    replay,
)


def _result(instance: str, caller: str | None = None, **cost) -> dict:
    return {
        "instance": instance,
        "instance_id": f"{instance}_1",
        "calling_instance": caller,
        "calling_instance_id": f"{caller}_1" if caller else None,
        "timestamp": "2024-01-01T00:00:00+00:00",
        "event": {"type": "result", **cost},
    }


def _write(path: Path, entries: list) -> Path:
    path.write_text(
        "".join((e if isinstance(e, str) else json.dumps(e)) + "\n" for e in entries),
        encoding="utf-8",
    )
    return path


class TestCumulative:
    def test_reset_is_folded(self, tmp_path: Path):
        log = _write(
            tmp_path / "log.json",
            [_result("backend", total_cost_usd=v) for v in (1.0, 2.5, 0.3, 1.1)],
        )
        summary = calculate_total_cost(log)
        assert summary.total_cost == pytest.approx(3.6)
        assert summary.instances_with_cost == {"backend"}

    def test_monotonic_values_take_the_last(self):
        cost = InstanceCost()
        for value in (0.1, 0.2, 0.4):
            cost.observe_cumulative(value)
        assert cost.total == pytest.approx(0.4)

    def test_instances_are_independent(self, tmp_path: Path):
        log = _write(
            tmp_path / "log.json",
            [
                _result("a", total_cost_usd=1.0),
                _result("b", total_cost_usd=0.5),
                _result("a", total_cost_usd=2.0),
            ],
        )
        assert calculate_total_cost(log).total_cost == pytest.approx(2.5)


class TestFlatAndTokens:
    def test_flat_costs_add_up(self, tmp_path: Path):
        log = _write(tmp_path / "log.json", [_result("api", cost_usd=0.1) for _ in range(3)])
        assert calculate_total_cost(log).total_cost == pytest.approx(0.3)

    def test_main_usage_is_priced(self, tmp_path: Path):
        entry = {
            "instance": "lead",
            "instance_id": "main",
            "event": {
                "type": "assistant",
                "message": {
                    "model": "claude-opus-4-1",
                    "usage": {"input_tokens": 1_000_000, "output_tokens": 1_000},
                },
            },
        }
        summary = calculate_total_cost(_write(tmp_path / "log.json", [entry]))
        assert summary.total_cost == pytest.approx(15.0 + 0.075)
        assert summary.instances_with_cost == {"lead"}

    def test_other_assistant_usage_is_ignored(self, tmp_path: Path):
        entry = {
            "instance": "backend",
            "instance_id": "backend_1",
            "event": {
                "type": "assistant",
                "message": {"model": "claude-opus-4-1", "usage": {"input_tokens": 1_000_000}},
            },
        }
        summary = calculate_total_cost(_write(tmp_path / "log.json", [entry]))
        assert summary.total_cost == 0.0
        assert summary.instances_with_cost == set()

    @pytest.mark.parametrize(
        "model,expected",
        [
            ("claude-sonnet-4-5", 3.0 + 15.0),
            ("claude-haiku-4-5", 0.8 + 4.0),
            ("gpt-4", 0.0),
            (None, 0.0),
        ],
    )
    def test_price_usage(self, model, expected):
        usage = {"input_tokens": 1_000_000, "output_tokens": 1_000_000}
        assert price_usage(usage, model) == pytest.approx(expected)

    def test_cache_tokens(self):
        usage = {"cache_creation_input_tokens": 1_000_000, "cache_read_input_tokens": 1_000_000}
        assert price_usage(usage, "sonnet") == pytest.approx(3.75 + 0.30)


class TestReplay:
    def test_missing_file_costs_nothing(self, tmp_path: Path):
        summary = calculate_total_cost(tmp_path / "absent.json")
        assert summary.total_cost == 0.0
        assert summary.instances_with_cost == set()

    def test_garbage_lines_skipped(self, tmp_path: Path):
        log = _write(
            tmp_path / "log.json",
            ["not json", _result("a", cost_usd=0.2), "[1]", "", _result("a", cost_usd="free")],
        )
        assert calculate_total_cost(log).total_cost == pytest.approx(0.2)

    def test_deterministic(self, tmp_path: Path):
        log = _write(
            tmp_path / "log.json",
            [_result("a", total_cost_usd=0.7), _result("b", cost_usd=0.05), _result("a", total_cost_usd=0.1)],
        )
        assert calculate_total_cost(log).total_cost == calculate_total_cost(log).total_cost

    def test_replay_lines(self):
        lines = [json.dumps(_result("a", total_cost_usd=1.0)), json.dumps(_result("a", total_cost_usd=0.5))]
        assert replay(lines).total == pytest.approx(1.5)


class TestHierarchy:
    def test_call_tree(self, tmp_path: Path):
        log = _write(
            tmp_path / "log.json",
            [
                {"instance": "lead", "instance_id": "main", "event": {"type": "user"}},
                {"instance": "backend", "calling_instance": "lead", "event": {"type": "request"}},
                _result("backend", caller="lead", total_cost_usd=0.2),
                _result("backend", caller="lead", total_cost_usd=0.5),
                _result("db", caller="backend", cost_usd=0.1),
            ],
        )
        nodes = parse_instance_hierarchy(log)
        assert set(nodes) == {"lead", "backend", "db"}
        assert nodes["backend"].calls == 2
        assert nodes["backend"].cost == pytest.approx(0.5)
        assert nodes["backend"].called_by == {"lead"}
        assert nodes["lead"].calls_to == {"backend"}
        assert nodes["backend"].calls_to == {"db"}
        assert nodes["db"].has_cost_data
        assert not nodes["lead"].has_cost_data

    def test_missing_file(self, tmp_path: Path):
        assert parse_instance_hierarchy(tmp_path / "absent.json") == {}
