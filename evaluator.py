from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from lexer import SimError, SimExtensionError
from parser import (
    Attribute,
    BinaryOp,
    BoolOp,
    CallArgument,
    CallExpression,
    Compare,
    Conditional,
    DictLiteral,
    Expression,
    FString,
    Identifier,
    IndexExpression,
    ListLiteral,
    Literal,
    SliceExpression,
    TupleLiteral,
    UnaryOp,
    parse_arguments,
    parse_expression,
)


# Limits that keep a single line's evaluation bounded in time and memory.
MAX_SEQUENCE_LENGTH = 100_000
MAX_INT_BITS = 100_000
MAX_FORMAT_WIDTH_DIGITS = 3

# Host exceptions that operators on native values may raise. They are
# reported with the same kind name the teaching language would use.
HOST_ERRORS = (
    TypeError,
    ValueError,
    ZeroDivisionError,
    IndexError,
    KeyError,
    AttributeError,
    OverflowError,
)


class SimRuntimeError(SimError):
    """Raised when an expression fails to evaluate."""

    def __init__(self, message: str, *, kind: str = "RuntimeError", line: Optional[int] = None) -> None:
        super().__init__(message, line=line)
        self.kind = kind


class SimNameError(SimRuntimeError):
    def __init__(self, name: str, *, line: Optional[int] = None) -> None:
        super().__init__(f"name '{name}' is not defined", kind="NameError", line=line)
        self.name = name


class RawText(str):
    """Unevaluated right-hand side stored when an assignment cannot be evaluated."""


def type_name(value: Any) -> str:
    if isinstance(value, RawText):
        return "str"
    if value is None:
        return "NoneType"
    if isinstance(value, BuiltinFunction):
        return "builtin_function_or_method"
    return type(value).__name__


@dataclass
class Scope:
    values: Dict[str, Any] = field(default_factory=dict)

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        raise SimNameError(name)

    def set(self, name: str, value: Any) -> None:
        self.values[name] = value

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Any) -> str:
            try:
                rendered = repr(val)
            except Exception:
                rendered = f"<{type_name(val)}>"
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            tag = "raw" if isinstance(val, RawText) else type_name(val)
            return f"{tag}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


BuiltinImpl = Callable[[List[Any], Dict[str, Any]], Any]


@dataclass(repr=False)
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: BuiltinImpl
    keywords: FrozenSet[str] = frozenset()

    def validate(self, supplied: int, keywords: Dict[str, Any]) -> None:
        if supplied < self.min_args:
            raise SimRuntimeError(
                f"{self.name}() takes at least {self.min_args} arguments ({supplied} given)", kind="TypeError"
            )
        if self.max_args is not None and supplied > self.max_args:
            raise SimRuntimeError(
                f"{self.name}() takes at most {self.max_args} arguments ({supplied} given)", kind="TypeError"
            )
        for key in keywords:
            if key not in self.keywords:
                raise SimRuntimeError(
                    f"{self.name}() got an unexpected keyword argument '{key}'", kind="TypeError"
                )

    def __repr__(self) -> str:
        return f"<built-in function {self.name}>"

    __str__ = __repr__


class Builtins:
    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        self._register("len", 1, 1, self._len)
        self._register("str", 0, 1, self._str)
        self._register("int", 0, 2, self._int)
        self._register("float", 0, 1, self._float)
        self._register("bool", 0, 1, self._bool)
        self._register("abs", 1, 1, self._abs)
        self._register("max", 1, None, self._max)
        self._register("min", 1, None, self._min)
        self._register("sum", 1, 2, self._sum)
        self._register("round", 1, 2, self._round)
        self._register("sorted", 1, 1, self._sorted, keywords={"reverse"})
        self._register("list", 0, 1, self._list)

    def _register(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: BuiltinImpl,
        *,
        keywords: Optional[set] = None,
    ) -> None:
        self.table[name] = BuiltinFunction(
            name=name,
            min_args=min_args,
            max_args=max_args,
            impl=impl,
            keywords=frozenset(keywords or ()),
        )

    def register_extension_builtin(
        self,
        *,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: BuiltinImpl,
        keywords: Optional[set] = None,
    ) -> None:
        if name in self.table:
            raise SimExtensionError(f"Cannot override existing builtin '{name}'")
        self._register(name, min_args, max_args, impl, keywords=keywords)

    def has(self, name: str) -> bool:
        return name in self.table

    def get(self, name: str) -> BuiltinFunction:
        return self.table[name]

    def invoke(self, builtin: BuiltinFunction, args: List[Any], kwargs: Dict[str, Any]) -> Any:
        builtin.validate(len(args), kwargs)
        for value in list(args) + list(kwargs.values()):
            _check_weight(value)
        try:
            return builtin.impl(args, kwargs)
        except SimError:
            raise
        except Exception as exc:
            # Extension code may raise anything; it surfaces as an evaluation failure.
            raise SimRuntimeError(str(exc), kind=exc.__class__.__name__) from exc

    def _len(self, args: List[Any], _: Dict[str, Any]) -> Any:
        value = args[0]
        if isinstance(value, (str, list, tuple, dict)):
            return len(value)
        raise SimRuntimeError(f"object of type '{type_name(value)}' has no len()", kind="TypeError")

    def _str(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return str(args[0]) if args else ""

    def _int(self, args: List[Any], _: Dict[str, Any]) -> Any:
        if not args:
            return 0
        if len(args) == 2 and not isinstance(args[0], str):
            raise SimRuntimeError("int() can't convert non-string with explicit base", kind="TypeError")
        if isinstance(args[0], str) and len(args[0]) > MAX_SEQUENCE_LENGTH:
            raise SimRuntimeError("int() argument is too long", kind="ValueError")
        return int(*args)

    def _float(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return float(args[0]) if args else 0.0

    def _bool(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return bool(args[0]) if args else False

    def _abs(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return abs(args[0])

    def _max(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return max(args[0]) if len(args) == 1 else max(args)

    def _min(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return min(args[0]) if len(args) == 1 else min(args)

    def _sum(self, args: List[Any], _: Dict[str, Any]) -> Any:
        if len(args) == 2 and isinstance(args[1], str):
            raise SimRuntimeError("sum() can't sum strings [use ''.join(seq) instead]", kind="TypeError")
        return sum(*args)

    def _round(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return round(*args)

    def _sorted(self, args: List[Any], kwargs: Dict[str, Any]) -> Any:
        return sorted(args[0], reverse=bool(kwargs.get("reverse", False)))

    def _list(self, args: List[Any], _: Dict[str, Any]) -> Any:
        return list(args[0]) if args else []


METHODS: Dict[type, FrozenSet[str]] = {
    str: frozenset({
        "upper", "lower", "strip", "lstrip", "rstrip", "title", "capitalize",
        "replace", "split", "join", "startswith", "endswith", "count", "find",
        "isdigit", "isalpha",
    }),
    list: frozenset({"append", "pop", "insert", "remove", "count", "index", "sort", "reverse", "copy"}),
    tuple: frozenset({"count", "index"}),
    dict: frozenset({"get", "keys", "values", "items", "pop"}),
}

# Keyword arguments accepted by allow-listed methods.
METHOD_KEYWORDS: Dict[str, FrozenSet[str]] = {
    "sort": frozenset({"reverse"}),
    "split": frozenset({"sep", "maxsplit"}),
}

_FORMAT_WIDTH = re.compile(r"\d{%d,}" % (MAX_FORMAT_WIDTH_DIGITS + 1))


def _method_table(value: Any) -> FrozenSet[str]:
    for kind in (str, list, tuple, dict):
        if isinstance(value, kind):
            return METHODS[kind]
    return frozenset()


def _weight(value: Any, limit: int = MAX_SEQUENCE_LENGTH) -> int:
    """Count the elements and characters reachable from value, nested ones included.

    Shared references are counted every time they appear, as str() would
    render them. A container already on the current path counts once. The
    walk stops as soon as the total passes limit.
    """
    total = 0
    active = set()
    stack: List[Tuple[Any, bool]] = [(value, False)]
    while stack and total <= limit:
        item, leaving = stack.pop()
        if leaving:
            active.discard(id(item))
            continue
        if isinstance(item, str):
            total += len(item)
        elif isinstance(item, int) and not isinstance(item, bool):
            bits = item.bit_length()
            total += 1 if bits <= 64 else bits // 3
        elif isinstance(item, (list, tuple, dict)):
            if not item or id(item) in active:
                total += 1
                continue
            active.add(id(item))
            stack.append((item, True))
            if isinstance(item, dict):
                for key, val in item.items():
                    stack.append((key, False))
                    stack.append((val, False))
            else:
                stack.extend((child, False) for child in item)
        else:
            total += 1
    return total


def _check_weight(value: Any) -> None:
    if isinstance(value, (str, list, tuple, dict)) and _weight(value) > MAX_SEQUENCE_LENGTH:
        raise SimRuntimeError("result is too large", kind="MemoryError")


def _check_size(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool) and value.bit_length() > MAX_INT_BITS:
        raise SimRuntimeError("integer result is too large", kind="OverflowError")
    _check_weight(value)
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int)


class Evaluator:
    """Evaluate single-line expressions against a Scope.

    Only names bound in the Scope and the registered builtins resolve. The
    evaluator reads the Scope but never binds or removes names in it.
    """

    def __init__(self, builtins: Optional[Builtins] = None) -> None:
        self.builtins = builtins or Builtins()

    def evaluate(self, text: str, scope: Scope) -> Any:
        return self._guarded(lambda: self.evaluate_node(parse_expression(text), scope))

    def evaluate_arguments(self, text: str, scope: Scope) -> Tuple[List[Any], Dict[str, Any]]:
        return self._guarded(lambda: self._evaluate_call_arguments(parse_arguments(text), scope))

    def store_item(self, target: str, value: Any, scope: Scope) -> None:
        """Perform ``container[key] = value`` for a subscript target such as ``notas[0]``."""
        def _store() -> None:
            node = parse_expression(target)
            if not isinstance(node, IndexExpression):
                raise SimRuntimeError("cannot assign to expression", kind="SyntaxError")
            container = self.evaluate_node(node.base, scope)
            if isinstance(container, (list, dict)) and _weight(container) + _weight(value) > MAX_SEQUENCE_LENGTH:
                raise SimRuntimeError("result is too large", kind="MemoryError")
            if isinstance(node.index, SliceExpression):
                container[self._slice(node.index, scope)] = value
            else:
                container[self.evaluate_node(node.index, scope)] = value

        self._guarded(_store)

    def display(self, value: Any) -> str:
        def _render() -> str:
            _check_weight(value)
            return str(value)

        return self._guarded(_render)

    def _guarded(self, thunk: Callable[[], Any]) -> Any:
        try:
            return thunk()
        except SimError:
            raise
        except KeyError as exc:
            raise SimRuntimeError(repr(exc.args[0]) if exc.args else "", kind="KeyError") from exc
        except HOST_ERRORS as exc:
            raise SimRuntimeError(str(exc), kind=exc.__class__.__name__) from exc
        except RecursionError as exc:
            raise SimRuntimeError("expression is nested too deeply", kind="RecursionError") from exc

    def evaluate_node(self, expression: Expression, scope: Scope) -> Any:
        if isinstance(expression, Literal):
            return expression.value
        if isinstance(expression, Identifier):
            if scope.has(expression.name):
                return scope.get(expression.name)
            if self.builtins.has(expression.name):
                return self.builtins.get(expression.name)
            raise SimNameError(expression.name)
        if isinstance(expression, FString):
            return _check_size("".join(self._render_fstring_part(part, scope) for part in expression.parts))
        if isinstance(expression, ListLiteral):
            return _check_size([self.evaluate_node(item, scope) for item in expression.items])
        if isinstance(expression, TupleLiteral):
            return _check_size(tuple(self.evaluate_node(item, scope) for item in expression.items))
        if isinstance(expression, DictLiteral):
            result: Dict[Any, Any] = {}
            for key_expr, value_expr in zip(expression.keys, expression.values):
                result[self.evaluate_node(key_expr, scope)] = self.evaluate_node(value_expr, scope)
            return _check_size(result)
        if isinstance(expression, UnaryOp):
            operand = self.evaluate_node(expression.operand, scope)
            if expression.op == "not":
                return not operand
            if expression.op == "-":
                return -operand
            return +operand
        if isinstance(expression, BoolOp):
            left = self.evaluate_node(expression.left, scope)
            if expression.op == "and":
                return self.evaluate_node(expression.right, scope) if left else left
            return left if left else self.evaluate_node(expression.right, scope)
        if isinstance(expression, BinaryOp):
            left = self.evaluate_node(expression.left, scope)
            right = self.evaluate_node(expression.right, scope)
            return self._binary(expression.op, left, right)
        if isinstance(expression, Compare):
            left = self.evaluate_node(expression.left, scope)
            for op, comparator in zip(expression.ops, expression.comparators):
                right = self.evaluate_node(comparator, scope)
                if not self._compare(op, left, right):
                    return False
                left = right
            return True
        if isinstance(expression, Conditional):
            if self.evaluate_node(expression.test, scope):
                return self.evaluate_node(expression.body, scope)
            return self.evaluate_node(expression.orelse, scope)
        if isinstance(expression, IndexExpression):
            base = self.evaluate_node(expression.base, scope)
            if isinstance(expression.index, SliceExpression):
                return base[self._slice(expression.index, scope)]
            return base[self.evaluate_node(expression.index, scope)]
        if isinstance(expression, CallExpression):
            return self._call(expression, scope)
        if isinstance(expression, Attribute):
            base = self.evaluate_node(expression.base, scope)
            raise SimRuntimeError(
                f"'{type_name(base)}' object attribute '{expression.name}' cannot be used without calling it",
                kind="AttributeError",
            )
        raise SimRuntimeError("unsupported expression")

    def _render_fstring_part(self, part: Any, scope: Scope) -> str:
        if isinstance(part, str):
            return part
        value = self.evaluate_node(part.expression, scope)
        _check_weight(value)
        if part.conversion == "r":
            value = repr(value)
        elif part.conversion == "s":
            value = str(value)
        spec = part.spec or ""
        if _FORMAT_WIDTH.search(spec):
            raise SimRuntimeError("format width is too large", kind="ValueError")
        return format(value, spec)

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op == "+":
            return _check_size(left + right)
        if op == "-":
            return left - right
        if op == "*":
            self._check_repeat(left, right)
            return _check_size(left * right)
        if op == "/":
            return left / right
        if op == "//":
            return left // right
        if op == "%":
            if isinstance(left, str) and _FORMAT_WIDTH.search(left):
                raise SimRuntimeError("format width is too large", kind="ValueError")
            _check_weight(right)
            return _check_size(left % right)
        if op == "**":
            if _is_int(left) and _is_int(right) and right > 0 and abs(left) > 1:
                if abs(left).bit_length() * right > MAX_INT_BITS:
                    raise SimRuntimeError("exponent is too large", kind="OverflowError")
            return left ** right
        raise SimRuntimeError(f"unsupported operator '{op}'")

    def _check_repeat(self, left: Any, right: Any) -> None:
        for seq, count in ((left, right), (right, left)):
            if isinstance(seq, (str, list, tuple)) and _is_int(count):
                if seq and _weight(seq) * max(count, 0) > MAX_SEQUENCE_LENGTH:
                    raise SimRuntimeError("result is too large", kind="MemoryError")
                return
        if _is_int(left) and _is_int(right):
            if abs(left).bit_length() + abs(right).bit_length() > MAX_INT_BITS:
                raise SimRuntimeError("integer result is too large", kind="OverflowError")

    def _compare(self, op: str, left: Any, right: Any) -> bool:
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "<":
            return left < right
        if op == ">":
            return left > right
        if op == "<=":
            return left <= right
        if op == ">=":
            return left >= right
        if op == "in":
            return left in right
        if op == "not in":
            return left not in right
        if op == "is":
            return left is right
        if op == "is not":
            return left is not right
        raise SimRuntimeError(f"unsupported comparison '{op}'")

    def _slice(self, node: SliceExpression, scope: Scope) -> slice:
        lower = self.evaluate_node(node.lower, scope) if node.lower is not None else None
        upper = self.evaluate_node(node.upper, scope) if node.upper is not None else None
        step = self.evaluate_node(node.step, scope) if node.step is not None else None
        return slice(lower, upper, step)

    def _evaluate_call_arguments(
        self, arguments: List[CallArgument], scope: Scope
    ) -> Tuple[List[Any], Dict[str, Any]]:
        positional: List[Any] = []
        keyword: Dict[str, Any] = {}
        for arg in arguments:
            value = self.evaluate_node(arg.expression, scope)
            if arg.name is None:
                positional.append(value)
                continue
            if arg.name in keyword:
                raise SimRuntimeError(f"keyword argument repeated: {arg.name}", kind="SyntaxError")
            keyword[arg.name] = value
        return positional, keyword

    def _call(self, expression: CallExpression, scope: Scope) -> Any:
        if isinstance(expression.func, Attribute):
            base = self.evaluate_node(expression.func.base, scope)
            args, kwargs = self._evaluate_call_arguments(expression.args, scope)
            return self._call_method(base, expression.func.name, args, kwargs)
        callee = self.evaluate_node(expression.func, scope)
        args, kwargs = self._evaluate_call_arguments(expression.args, scope)
        if not isinstance(callee, BuiltinFunction):
            raise SimRuntimeError(f"'{type_name(callee)}' object is not callable", kind="TypeError")
        return _check_size(self.builtins.invoke(callee, args, kwargs))

    def _call_method(self, base: Any, name: str, args: List[Any], kwargs: Dict[str, Any]) -> Any:
        if name not in _method_table(base):
            raise SimRuntimeError(f"'{type_name(base)}' object has no attribute '{name}'", kind="AttributeError")
        allowed = METHOD_KEYWORDS.get(name, frozenset())
        for key in kwargs:
            if key not in allowed:
                raise SimRuntimeError(f"{name}() got an unexpected keyword argument '{key}'", kind="TypeError")
        for value in args:
            _check_weight(value)
        if _estimated_method_size(base, name, args) > MAX_SEQUENCE_LENGTH:
            raise SimRuntimeError("result is too large", kind="MemoryError")
        return _check_size(getattr(base, name)(*args, **kwargs))


def _estimated_method_size(base: Any, name: str, args: List[Any]) -> int:
    """Upper bound on the length of a method's result, computed before calling it."""
    if name in ("append", "insert"):
        return _weight(base) + (_weight(args[-1]) if args else 1)
    if name == "replace" and len(args) >= 2 and isinstance(args[0], str) and isinstance(args[1], str):
        old, new = args[0], args[1]
        occurrences = base.count(old) if old else len(base) + 1
        return len(base) + occurrences * max(len(new) - len(old), 0)
    if name == "join" and isinstance(base, str) and isinstance(args[0] if args else None, (list, tuple)):
        items = args[0]
        text_length = sum(len(item) for item in items if isinstance(item, str))
        return text_length + len(base) * max(len(items) - 1, 0)
    return 0
