from domain.script_context import RequestSnapshot, ScriptContext, VariableState


class TestVariableState:
    def test_seeded_uses_local_only(self):
        state = VariableState.seeded({"user": "alice"})

        assert state.local_vars == {"user": "alice"}
        assert state.global_vars == {}
        assert state.environment_vars == {}

    def test_merged_precedence(self):
        state = VariableState(
            global_vars={"a": "g", "only_g": "1"},
            collection_vars={"a": "c"},
            environment_vars={"a": "e"},
            local_vars={"a": "l"},
        )

        assert state.merged() == {"a": "l", "only_g": "1"}


class TestScriptContext:
    def test_from_state_copies_maps(self):
        state = VariableState(environment_vars={"token": "t"})
        ctx = ScriptContext.from_state(state, RequestSnapshot(url="u", method="GET"))

        ctx.environment_vars["token"] = "changed"

        assert state.environment_vars == {"token": "t"}
        assert ctx.variable_state().environment_vars == {"token": "changed"}

    def test_console_cap(self):
        ctx = ScriptContext(request=RequestSnapshot(url="u", method="GET"), max_console_lines=2)

        assert ctx.add_console_line("1")
        assert ctx.add_console_line("2")
        assert not ctx.add_console_line("3")
        assert ctx.console == ["1", "2"]

    def test_assertions(self):
        ctx = ScriptContext(request=RequestSnapshot(url="u", method="GET"))
        assert ctx.all_assertions_passed

        ctx.add_assertion("a", True)
        ctx.add_assertion("b", False, "nope")

        assert not ctx.all_assertions_passed
        assert ctx.assertions[1].to_dict() == {"name": "b", "passed": False, "message": "nope"}
