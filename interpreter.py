from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from classifier import (
    Assignment,
    Blank,
    ExpressionStatement,
    FlowKeyword,
    Header,
    ItemAssignment,
    Line,
    Print,
    Raise,
    SimSyntaxError,
    classify_line,
)
from evaluator import Builtins, Evaluator, RawText, Scope, SimRuntimeError
from extensions import HookRegistry, RuntimeServices, build_default_services
from lexer import SimError


DEFAULT_FILENAME = "main.py"

PRINT_KEYWORDS = {"sep", "end", "flush"}


@dataclass(frozen=True)
class SimulationResult:
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.stderr == ""


@dataclass
class StateEntry:
    step_index: int
    line: int
    rule: str
    statement: str
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(self, *, line: int, rule: str, statement: str, env_snapshot: Optional[Dict[str, str]] = None) -> StateEntry:
        entry = StateEntry(
            step_index=self.next_state_index,
            line=line,
            rule=rule,
            statement=statement,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str = DEFAULT_FILENAME,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self._source_lines = source.replace("\r\n", "\n").split("\n")
        self.filename = filename
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.output_sink = output_sink
        self.builtins = Builtins()
        for builtin in self.services.builtins:
            self.builtins.register_extension_builtin(
                name=builtin.name,
                min_args=builtin.min_args,
                max_args=builtin.max_args,
                impl=builtin.impl,
                keywords=set(builtin.keywords),
            )
        self.evaluator = Evaluator(self.builtins)
        self.scope = Scope()
        self.logger = StateLogger(verbose=verbose)
        self.error: Optional[SimError] = None
        self._output: List[str] = []

    @property
    def stdout(self) -> str:
        text = "".join(self._output)
        return text[:-1] if text.endswith("\n") else text

    def run(self) -> SimulationResult:
        try:
            self._emit_event("program_start", self)
            for number, raw in enumerate(self._source_lines, start=1):
                self.execute_line(raw, number)
            self._emit_event("program_end", self)
        except SimError as error:
            last = self.logger.last_entry()
            if error.line is None and last is not None:
                error.line = last.line
            return SimulationResult(stdout=self.stdout, stderr=self._report(error))
        except Exception as exc:
            # Unexpected host-level failures still come back as a traceback.
            last = self.logger.last_entry()
            wrapped = SimRuntimeError(f"internal simulator error: {exc}", line=last.line if last else 1)
            return SimulationResult(stdout=self.stdout, stderr=self._report(wrapped))
        return SimulationResult(stdout=self.stdout, stderr="")

    def execute_line(self, raw: str, number: int) -> None:
        try:
            line = classify_line(raw, number)
        except SimError as error:
            self._log_step(rule="SyntaxCheck", line=number, statement=raw.strip())
            raise self._at_line(error, number)
        if isinstance(line, Blank):
            return
        try:
            self._emit_event("before_line", self, line)
            self._log_step(rule=line.__class__.__name__, line=number, statement=line.text)
            self._execute_line(line)
            self._emit_event("after_line", self, line)
        except SimError as error:
            raise self._at_line(error, number)

    def _execute_line(self, line: Line) -> None:
        if isinstance(line, (Header, FlowKeyword)):
            return
        if isinstance(line, Print):
            self._execute_print(line)
            return
        if isinstance(line, Raise):
            raise SimRuntimeError("manual exception", kind=line.error_kind)
        if isinstance(line, Assignment):
            self._execute_assignment(line)
            return
        if isinstance(line, ItemAssignment):
            try:
                value = self.evaluator.evaluate(line.expression, self.scope)
                self.evaluator.store_item(line.target, value, self.scope)
            except SimError:
                pass  # assignments never halt a run
            return
        if isinstance(line, ExpressionStatement):
            try:
                self.evaluator.evaluate(line.expression, self.scope)
            except SimError:
                raise SimSyntaxError("invalid syntax")
            return
        raise SimRuntimeError(f"unsupported line kind {line.__class__.__name__}")

    def _execute_print(self, line: Print) -> None:
        try:
            args, kwargs = self.evaluator.evaluate_arguments(line.arguments, self.scope)
            text = self._render_print(args, kwargs)
        except SimError as error:
            if error.kind == "NameError":
                raise SimRuntimeError(error.message, kind="NameError")
            raise SimRuntimeError("evaluation failed")
        self._output.append(text)
        if self.output_sink is not None:
            self.output_sink(text)

    def _render_print(self, args: List[Any], kwargs: Dict[str, Any]) -> str:
        for key in kwargs:
            if key not in PRINT_KEYWORDS:
                raise SimRuntimeError(f"'{key}' is an invalid keyword argument for print()", kind="TypeError")
        sep = kwargs.get("sep")
        end = kwargs.get("end")
        for label, value in (("sep", sep), ("end", end)):
            if value is not None and not isinstance(value, str):
                raise SimRuntimeError(f"{label} must be None or a string", kind="TypeError")
        sep = " " if sep is None else sep
        end = "\n" if end is None else end
        return sep.join(self.evaluator.display(arg) for arg in args) + end

    def _execute_assignment(self, line: Assignment) -> None:
        expression = line.expression
        if line.operator is not None:
            expression = f"{line.targets[0]} {line.operator} ({line.expression})"
        try:
            value = self.evaluator.evaluate(expression, self.scope)
            values = self._unpack(value, len(line.targets))
        except SimError:
            values = [RawText(line.expression)] * len(line.targets)
        for target, item in zip(line.targets, values):
            self.scope.set(target, item)

    def _unpack(self, value: Any, count: int) -> List[Any]:
        if count == 1:
            return [value]
        if not isinstance(value, (list, tuple, str)):
            raise SimRuntimeError(f"cannot unpack non-iterable {type(value).__name__} object", kind="TypeError")
        if len(value) != count:
            raise SimRuntimeError(f"expected {count} values to unpack, got {len(value)}", kind="ValueError")
        return list(value)

    def _at_line(self, error: SimError, number: int) -> SimError:
        if error.line is None:
            error.line = number
        return error

    def _report(self, error: SimError) -> str:
        try:
            self._emit_event("on_error", self, error)
        except SimError as hook_error:
            hook_error.line = hook_error.line or error.line
            error = hook_error
        self.error = error
        return TracebackFormatter(self).format_text(error, verbose=self.verbose)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except SimError:
            raise
        except Exception as exc:
            raise SimRuntimeError(f"Extension hook '{event}' failed: {exc}")

    def _log_step(self, *, rule: str, line: int, statement: str) -> None:
        env_snapshot = self.scope.snapshot() if self.verbose else None
        self.logger.record(line=line, rule=rule, statement=statement, env_snapshot=env_snapshot)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def format_text(self, error: SimError, verbose: bool = False) -> str:
        line = error.line or 1
        lines = [
            "Traceback (most recent call last):",
            f"  File \"{self.interpreter.filename}\", line {line}, in <module>",
        ]
        if verbose:
            entry = self.interpreter.logger.last_entry()
            if entry is not None:
                lines.append(f"    {entry.statement}")
                lines.append(f"    State log index: {entry.step_index}")
                if entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.kind}: {error.message}")
        return "\n".join(lines)

    def to_json(self, error: SimError) -> str:
        steps: List[Dict[str, Any]] = []
        for entry in self.interpreter.logger.entries:
            step: Dict[str, Any] = {
                "step_index": entry.step_index,
                "line": entry.line,
                "rule": entry.rule,
                "statement": entry.statement,
            }
            if entry.env_snapshot is not None:
                step["env_snapshot"] = entry.env_snapshot
            steps.append(step)
        data = {
            "error": {
                "type": error.kind,
                "message": error.message,
                "file": self.interpreter.filename,
                "line": error.line,
            },
            "steps": steps,
        }
        return json.dumps(data, indent=2)


def simulate(code: str, *, services: Optional[RuntimeServices] = None) -> SimulationResult:
    """Run a snippet line by line in a fresh scope and capture its output."""
    return Interpreter(source=code, services=services).run()
