"""
tests/test_interpreter.py - Tests for interpreter.py

End-to-end behaviour of simulate(): captured output, the exact traceback
text, fail-fast halting, the assignment fallback, hooks and the JSON form.
"""

import json

import pytest

from interpreter import Interpreter, SimulationResult, TracebackFormatter, simulate


def traceback(line, kind, message):
    return "\n".join(
        [
            "Traceback (most recent call last):",
            f'  File "main.py", line {line}, in <module>',
            f"{kind}: {message}",
        ]
    )


class TestScenarios:
    """The reference scenarios for the simulator."""

    def test_print_sum(self):
        """print(2 + 2) prints 4."""
        assert simulate("print(2 + 2)") == SimulationResult(stdout="4", stderr="")

    def test_assign_then_print(self):
        """A variable assigned on one line is visible on the next."""
        assert simulate("edad = 25\nprint(edad)") == SimulationResult(stdout="25", stderr="")

    def test_undefined_name(self):
        """An unassigned name halts with a NameError traceback."""
        result = simulate("print(nombre)")
        assert result.stdout == ""
        assert result.stderr == traceback(1, "NameError", "name 'nombre' is not defined")

    def test_missing_colon(self):
        """A header without ':' halts with SyntaxError."""
        result = simulate("if edad >= 18")
        assert result.stderr == traceback(1, "SyntaxError", "expected ':'")

    def test_multiple_prints_join_with_newline(self):
        """Each print is one line of stdout."""
        result = simulate('print("a")\nprint("b")\nprint("c")')
        assert result.stdout == "a\nb\nc"


class TestProperties:
    """General properties of simulate()."""

    @pytest.mark.parametrize("code", ["", "\n\n", "# uno\n   # dos\n\n", "   "])
    def test_comments_only(self, code):
        """Blank and comment-only programs produce nothing."""
        assert simulate(code) == SimulationResult(stdout="", stderr="")

    def test_unbalanced_parenthesis_reports_line(self):
        """The first unbalanced line number is reported."""
        result = simulate("x = 1\nprint(x)\nprint((x)\nprint(")
        assert "SyntaxError" in result.stderr
        assert "line 3" in result.stderr
        assert result.stdout == "1"

    def test_idempotent(self):
        """Two runs of the same code give identical results."""
        code = "lista = [1, 2]\nlista.append(3)\nprint(lista)\nprint(total)"
        assert simulate(code) == simulate(code)

    def test_fail_fast(self):
        """Nothing after the first failing line runs."""
        result = simulate("print(1)\nprint(x)\nprint(2)")
        assert result.stdout == "1"
        assert result.stderr == traceback(2, "NameError", "name 'x' is not defined")

    def test_runs_are_isolated(self):
        """A variable from one run is not visible in another."""
        simulate("secreto = 1")
        assert "NameError" in simulate("print(secreto)").stderr

    def test_crlf_line_endings(self):
        """Windows line endings are handled."""
        assert simulate("x = 2\r\nprint(x)\r\n").stdout == "2"

    def test_ok_property(self):
        """ok is true exactly when stderr is empty."""
        assert simulate("print(1)").ok
        assert not simulate("print(x)").ok


class TestLineRules:
    """One test per executor rule."""

    def test_triple_equals(self):
        """'===' halts with invalid syntax."""
        assert simulate("x = 1\nx === 1").stderr == traceback(2, "SyntaxError", "invalid syntax")

    def test_unclosed_bracket(self):
        """An unclosed bracket halts with invalid syntax."""
        assert simulate("x = [1, 2").stderr == traceback(1, "SyntaxError", "invalid syntax")

    def test_flow_keywords_skipped(self):
        """Flow keywords are accepted but not executed."""
        assert simulate("return 5\npass\nbreak\ncontinue") == SimulationResult(stdout="", stderr="")

    def test_print_runtime_failure(self):
        """A non-name failure inside print is a generic RuntimeError."""
        result = simulate("print(len(5))")
        assert result.stderr == traceback(1, "RuntimeError", "evaluation failed")

    def test_print_division_by_zero(self):
        """Division by zero inside print is also reported as evaluation failed."""
        assert simulate("print(1 / 0)").stderr.endswith("RuntimeError: evaluation failed")

    def test_nested_repeat_falls_back(self):
        """An oversized nested repeat on an assignment stores the raw text."""
        result = simulate("x = [[0] * 100000] * 100\nprint(x)")
        assert result == SimulationResult(stdout="[[0] * 100000] * 100", stderr="")

    def test_nested_repeat_does_not_reach_str(self):
        """str() of a refused nested repeat sees only the stored raw text."""
        result = simulate("x = [[0] * 100000] * 100000\ns = str(x)\nprint(1)")
        assert result == SimulationResult(stdout="1", stderr="")

    def test_self_referencing_list(self):
        """A list appended to itself prints with the usual ellipsis."""
        assert simulate("x = [1]\nx.append(x)\nprint(x)").stdout == "[1, [...]]"

    def test_apostrophe_inside_double_quotes(self):
        """A single quote inside a double-quoted string is ordinary text."""
        assert simulate('print("it\'s")') == SimulationResult(stdout="it's", stderr="")

    def test_print_multiple_arguments(self):
        """Multiple arguments are joined with a space."""
        assert simulate('nombre = "Ana"\nprint("Hola", nombre)').stdout == "Hola Ana"

    def test_print_sep_and_end(self):
        """sep and end are honoured."""
        result = simulate('print(1, 2, sep="-", end="")\nprint("!")')
        assert result.stdout == "1-2!"

    def test_empty_print(self):
        """print() emits an empty line."""
        assert simulate('print("a")\nprint()\nprint("b")').stdout == "a\n\nb"

    def test_print_python_values(self):
        """Values print the way the teaching language prints them."""
        code = "print(True)\nprint(None)\nprint([1, 'a'])\nprint(7 // 2)"
        assert simulate(code).stdout == "True\nNone\n[1, 'a']\n3"

    def test_raise(self):
        """raise ValueError halts regardless of its message."""
        result = simulate('print("antes")\nraise ValueError("lo que sea")\nprint("despues")')
        assert result.stdout == "antes"
        assert result.stderr == traceback(2, "ValueError", "manual exception")

    def test_assignment_fallback_to_raw_text(self):
        """An assignment that cannot be evaluated stores its text."""
        result = simulate("y = z + 1\nprint(y)")
        assert result == SimulationResult(stdout="z + 1", stderr="")

    def test_assignment_fallback_is_raw_text(self):
        """The fallback value is a RawText placeholder."""
        from evaluator import RawText

        interpreter = Interpreter(source='texto = "hola".format()')
        interpreter.run()
        value = interpreter.scope.get("texto")
        assert isinstance(value, RawText)
        assert value == '"hola".format()'

    def test_augmented_assignment(self):
        """x += n updates x."""
        assert simulate("x = 1\nx += 4\nx *= 2\nprint(x)").stdout == "10"

    def test_multiple_assignment(self):
        """a, b = 1, 2 unpacks."""
        assert simulate("a, b = 1, 2\nprint(b, a)").stdout == "2 1"

    def test_item_assignment(self):
        """Subscript assignment updates the container."""
        assert simulate("notas = [1, 2]\nnotas[0] = 9\nprint(notas)").stdout == "[9, 2]"

    def test_item_assignment_failure_is_not_fatal(self):
        """A failing subscript assignment is ignored."""
        assert simulate("notas = [1]\nnotas[5] = 9\nprint(notas)").stdout == "[1]"

    def test_headers_accepted(self):
        """Block headers with ':' are accepted and body lines run in order."""
        code = "edad = 20\nif edad >= 18:\n    print('adulto')\nfor i in [1, 2]:\n    pass"
        assert simulate(code) == SimulationResult(stdout="adulto", stderr="")

    def test_bare_expression(self):
        """A valid bare expression runs silently."""
        assert simulate("x = 2\nx * 3") == SimulationResult(stdout="", stderr="")

    def test_bare_expression_failure(self):
        """A failing bare expression is invalid syntax."""
        assert simulate("x + 1").stderr == traceback(1, "SyntaxError", "invalid syntax")

    def test_equality_statement(self):
        """x == 5 is a bare expression, not an assignment."""
        result = simulate("x = 5\nx == 5\nprint(x)")
        assert result.stdout == "5"

    def test_invalid_character(self):
        """Characters outside the allowed set halt a bare expression."""
        assert simulate("x = 1\nx; y").stderr == traceback(2, "SyntaxError", "invalid syntax")

    def test_string_methods(self):
        """Allow-listed methods work inside print."""
        assert simulate('nombre = "ana"\nprint(nombre.upper())').stdout == "ANA"

    def test_fstring(self):
        """f-strings interpolate scope values."""
        assert simulate('nombre = "Ana"\nedad = 30\nprint(f"{nombre} tiene {edad}")').stdout == "Ana tiene 30"


class TestInterpreterObject:
    """Tests for the Interpreter class behind simulate()."""

    def test_filename_in_traceback(self):
        """The configured filename appears in the traceback."""
        result = Interpreter(source="print(x)", filename="leccion.py").run()
        assert 'File "leccion.py", line 1' in result.stderr

    def test_output_sink(self):
        """Printed text is also pushed to the output sink."""
        chunks = []
        Interpreter(source="print(1)\nprint(2)", output_sink=chunks.append).run()
        assert chunks == ["1\n", "2\n"]

    def test_state_log(self):
        """One step is logged per executed line."""
        interpreter = Interpreter(source="x = 1\n\nprint(x)")
        interpreter.run()
        rules = [entry.rule for entry in interpreter.logger.entries]
        assert rules == ["Assignment", "Print"]
        assert [entry.line for entry in interpreter.logger.entries] == [1, 3]

    def test_verbose_traceback(self):
        """Verbose tracebacks add the statement and a scope snapshot."""
        result = Interpreter(source="x = 1\nprint(y)", verbose=True).run()
        lines = result.stderr.split("\n")
        assert lines[0] == "Traceback (most recent call last):"
        assert "    print(y)" in lines
        assert any(line.startswith("    Env snapshot: x=int:1") for line in lines)
        assert lines[-1] == "NameError: name 'y' is not defined"

    def test_error_is_kept(self):
        """The halting error is available after run()."""
        interpreter = Interpreter(source="print(1)\nraise ValueError('x')")
        interpreter.run()
        assert interpreter.error is not None
        assert interpreter.error.kind == "ValueError"
        assert interpreter.error.line == 2

    def test_json_traceback(self):
        """The JSON traceback carries the error and the step log."""
        interpreter = Interpreter(source="x = 1\nprint(y)")
        interpreter.run()
        data = json.loads(TracebackFormatter(interpreter).to_json(interpreter.error))
        assert data["error"] == {
            "type": "NameError",
            "message": "name 'y' is not defined",
            "file": "main.py",
            "line": 2,
        }
        assert [step["line"] for step in data["steps"]] == [1, 2]


class TestHooks:
    """Tests for hook events fired by the interpreter."""

    def _services(self):
        from extensions import ExtensionAPI, build_default_services

        services = build_default_services()
        return services, ExtensionAPI(services=services, ext_name="test")

    def test_events_fire_in_order(self):
        """program_start, per-line events and program_end all fire."""
        services, ext = self._services()
        seen = []
        ext.on_event("program_start", lambda interp: seen.append("start"))
        ext.on_event("before_line", lambda interp, line: seen.append(f"before:{line.number}"))
        ext.on_event("after_line", lambda interp, line: seen.append(f"after:{line.number}"))
        ext.on_event("program_end", lambda interp: seen.append("end"))

        Interpreter(source="x = 1\n\nprint(x)", services=services).run()
        assert seen == ["start", "before:1", "after:1", "before:3", "after:3", "end"]

    def test_on_error(self):
        """on_error receives the halting error."""
        services, ext = self._services()
        errors = []
        ext.on_event("on_error", lambda interp, error: errors.append(error.kind))

        Interpreter(source="print(x)", services=services).run()
        assert errors == ["NameError"]

    def test_failing_hook(self):
        """A hook that raises becomes a RuntimeError traceback."""
        services, ext = self._services()

        def boom(interp, line):
            raise ValueError("kaput")

        ext.on_event("before_line", boom)
        result = Interpreter(source="x = 1", services=services).run()
        assert result.stderr == traceback(1, "RuntimeError", "Extension hook 'before_line' failed: kaput")
