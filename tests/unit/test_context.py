"""Tests for the immutable flow context."""

from waveflow.context import FlowContext


class TestFlowContext:
    def test_add_returns_new_context(self, make_response) -> None:
        empty = FlowContext.empty()
        one = empty.add("auth", make_response(body={"token": "t"}))
        assert len(empty) == 0
        assert "auth" in one
        assert "AUTH" in one
        assert one.aliases == ("auth",)

    def test_re_adding_alias_moves_it_last(self, make_response) -> None:
        ctx = (
            FlowContext.empty()
            .add("a", make_response(body={"v": 1}))
            .add("b", make_response(body={"v": 2}))
            .add("A", make_response(body={"v": 3}))
        )
        assert ctx.aliases == ("b", "A")
        assert ctx.lookup("a.body.v") == "3"

    def test_alias_less_prefers_most_recent(self, make_response) -> None:
        ctx = (
            FlowContext.empty()
            .add("first", make_response(body={"id": "old", "only": "here"}))
            .add("second", make_response(body={"id": "new"}))
        )
        assert ctx.lookup("$body.id") == "new"
        assert ctx.lookup("$body.only") == "here"

    def test_visible_to_filters_aliases(self, make_response) -> None:
        ctx = (
            FlowContext.empty()
            .add("up", make_response(body={"x": 1}))
            .add("side", make_response(body={"x": 2}))
        )
        visible = ctx.visible_to(["UP"])
        assert visible.aliases == ("up",)
        assert visible.lookup("side.body.x") is None

    def test_to_variable_source_only_upstream_and_referenced(self, make_response) -> None:
        ctx = (
            FlowContext.empty()
            .add("up", make_response(body={"x": 1, "y": 2}))
            .add("side", make_response(body={"x": 9}))
        )
        bindings = ctx.to_variable_source(
            ["up"], ["up.body.x", "side.body.x", "$body.x", "baseUrl"]
        )
        assert bindings == {"up.body.x": "1", "$body.x": "1"}

    def test_unknown_alias(self) -> None:
        assert FlowContext.empty().lookup("nobody.body.x") is None
        assert FlowContext.empty().get("nobody") is None
