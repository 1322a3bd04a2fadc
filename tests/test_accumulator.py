"""Tests for positional tool-call accumulation."""

from quarry.api.accumulator import ToolCallAccumulator, parse_arguments
from quarry.api.models import ToolUseBlock


class TestParseArguments:
    def test_object(self):
        assert parse_arguments('{"query": "SELECT 1"}') == {"query": "SELECT 1"}

    def test_empty(self):
        assert parse_arguments("") == {}
        assert parse_arguments("   ") == {}

    def test_malformed(self):
        assert parse_arguments('{"query": ') == {}

    def test_non_object(self):
        assert parse_arguments("[1, 2]") == {}


class TestToolCallAccumulator:
    def test_fragments_go_to_latest_open_call(self):
        acc = ToolCallAccumulator()
        acc.open("t1", "execute_sql_query")
        acc.append_arg('{"query": ')
        acc.append_arg('"SELECT 1"}')
        acc.open("t2", "create_chart")
        acc.append_arg('{"title": "Signups"}')

        blocks = acc.finalize_all()

        assert blocks == [
            ToolUseBlock(id="t1", name="execute_sql_query", input={"query": "SELECT 1"}),
            ToolUseBlock(id="t2", name="create_chart", input={"title": "Signups"}),
        ]

    def test_fragment_before_any_open_is_dropped(self):
        acc = ToolCallAccumulator()
        acc.append_arg('{"lost": true}')
        acc.open("t1", "x")
        assert acc.finalize_all()[0].input == {}

    def test_call_without_fragments_gets_empty_input(self):
        acc = ToolCallAccumulator()
        acc.open("t1", "x")
        assert acc.finalize_all() == [ToolUseBlock(id="t1", name="x", input={})]

    def test_malformed_call_is_kept(self):
        acc = ToolCallAccumulator()
        acc.open("t1", "x")
        acc.append_arg('{"broken"')
        acc.open("t2", "y")
        acc.append_arg('{"ok": 1}')
        blocks = acc.finalize_all()
        assert [b.id for b in blocks] == ["t1", "t2"]
        assert blocks[0].input == {}
        assert blocks[1].input == {"ok": 1}

    def test_pending_and_len(self):
        acc = ToolCallAccumulator()
        assert len(acc) == 0
        acc.open("t1", "x")
        acc.append_arg("{")
        assert len(acc) == 1
        assert acc.pending[0].raw_arguments == "{"

    def test_finalize_consumes(self):
        acc = ToolCallAccumulator()
        acc.open("t1", "x")
        assert len(acc.finalize_all()) == 1
        assert acc.finalize_all() == []
        assert len(acc) == 0
        acc.append_arg("{}")  # no open call after reset
        assert acc.finalize_all() == []
