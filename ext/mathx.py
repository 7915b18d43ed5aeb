"""pysim extension: square roots and rounding helpers for numeric lessons.

Registers ``sqrt``, ``floor`` and ``ceil`` as builtins so that lesson
snippets written as ``print(sqrt(16))`` can be graded.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List

from evaluator import SimRuntimeError, type_name
from extensions import ExtensionAPI


SIM_EXTENSION_NAME = "mathx"
SIM_EXTENSION_API_VERSION = 1


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SimRuntimeError(f"must be real number, not {type_name(value)}", kind="TypeError")
    return value


def _sqrt(args: List[Any], _: Dict[str, Any]) -> Any:
    value = _number(args[0])
    if value < 0:
        raise SimRuntimeError("math domain error", kind="ValueError")
    return math.sqrt(value)


def _floor(args: List[Any], _: Dict[str, Any]) -> Any:
    return math.floor(_number(args[0]))


def _ceil(args: List[Any], _: Dict[str, Any]) -> Any:
    return math.ceil(_number(args[0]))


def sim_register(ext: ExtensionAPI) -> None:
    ext.metadata(name=SIM_EXTENSION_NAME, version="1.0.0")
    ext.register_builtin("sqrt", 1, 1, _sqrt, doc="sqrt(x): square root of a non-negative number")
    ext.register_builtin("floor", 1, 1, _floor, doc="floor(x): largest integer <= x")
    ext.register_builtin("ceil", 1, 1, _ceil, doc="ceil(x): smallest integer >= x")
