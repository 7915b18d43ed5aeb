"""Extension loading for the snippet simulator.

An extension is a Python file defining ``sim_register(ext)``. It receives an
``ExtensionAPI`` and may add builtins callable from snippets or subscribe to
interpreter events. Optional module attributes: ``SIM_EXTENSION_NAME`` and
``SIM_EXTENSION_API_VERSION``.
"""

from __future__ import annotations

import hashlib
import importlib.util
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from evaluator import Builtins
from lexer import SimExtensionError


EXTENSION_API_VERSION = 1

EVENTS = ("program_start", "before_line", "after_line", "on_error", "program_end")


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class ExtensionBuiltin:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: Callable[[List[Any], Dict[str, Any]], Any]
    keywords: FrozenSet[str] = frozenset()
    doc: str = ""
    ext_name: str = ""


@dataclass(frozen=True)
class HookHandler:
    priority: int
    order: int
    handler: Callable[..., None]
    ext_name: str


@dataclass
class HookRegistry:
    _events: Dict[str, List[HookHandler]] = field(default_factory=dict)
    _registered: int = 0

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise SimExtensionError(f"Unknown event '{event}'")
        handlers = self._events.setdefault(event, [])
        handlers.append(HookHandler(priority=priority, order=self._registered, handler=handler, ext_name=ext_name))
        self._registered += 1
        # Highest priority first; equal priorities keep registration order.
        handlers.sort(key=lambda h: (-h.priority, h.order))

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for hook in self._events.get(event, ()):
            hook.handler(*args, **kwargs)

    def handlers(self, event: str) -> List[str]:
        return [hook.ext_name for hook in self._events.get(event, ())]


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # Copied into each interpreter's builtin table when it is constructed.
    builtins: List[ExtensionBuiltin] = field(default_factory=list)

    def add_builtin(self, builtin: ExtensionBuiltin) -> None:
        if Builtins().has(builtin.name):
            raise SimExtensionError(f"Cannot override existing builtin '{builtin.name}'")
        for existing in self.builtins:
            if existing.name == builtin.name:
                raise SimExtensionError(
                    f"Builtin '{builtin.name}' from '{builtin.ext_name}' is already provided by '{existing.ext_name}'"
                )
        self.builtins.append(builtin)

    def describe(self) -> List[str]:
        """One line per extension builtin, for the REPL's help listing."""
        lines = []
        for builtin in self.builtins:
            line = f"{builtin.name} ({builtin.ext_name})"
            if builtin.doc:
                line += f": {builtin.doc}"
            lines.append(line)
        return lines


class ExtensionAPI:
    """Registration surface handed to ``sim_register``."""

    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    def register_builtin(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: Callable[[List[Any], Dict[str, Any]], Any],
        *,
        keywords: Iterable[str] = (),
        doc: str = "",
    ) -> None:
        if not name or not name.isidentifier():
            raise SimExtensionError(f"Builtin name must be a valid identifier, got {name!r}")
        if max_args is not None and max_args < min_args:
            raise SimExtensionError(f"Builtin '{name}' accepts at most {max_args} but at least {min_args} arguments")
        self._services.add_builtin(
            ExtensionBuiltin(
                name=name,
                min_args=int(min_args),
                max_args=None if max_args is None else int(max_args),
                impl=impl,
                keywords=frozenset(keywords),
                doc=doc,
                ext_name=self._ext_name,
            )
        )

    def builtin(self, name: str, min_args: int, max_args: Optional[int] = None, *, keywords: Iterable[str] = (), doc: str = ""):
        def deco(fn):
            self.register_builtin(name, min_args, max_args, fn, keywords=keywords, doc=doc)
            return fn

        return deco

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        registry = self._services.hook_registry
        if handler is not None:
            registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
            return handler

        def deco(fn):
            registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
            return fn

        return deco


def _module_name(path: Path) -> str:
    digest = hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:12]
    stem = "".join(ch if ch.isalnum() else "_" for ch in path.stem)
    return f"pysim_ext_{stem}_{digest}"


def load_extension_module(path: str) -> Any:
    ext_path = Path(path).resolve()
    if not ext_path.is_file():
        raise SimExtensionError(f"Extension not found: {path}")
    spec = importlib.util.spec_from_file_location(_module_name(ext_path), ext_path)
    if spec is None or spec.loader is None:
        raise SimExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Extensions may import helper modules that sit next to them.
    ext_dir = str(ext_path.parent)
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise SimExtensionError(f"Extension {path} failed to import: {exc}") from exc
    finally:
        if ext_dir in sys.path:
            sys.path.remove(ext_dir)
    return module


def _expand_paths(paths: Sequence[str]) -> List[str]:
    """Directories stand for every ``*.py`` file directly inside them."""
    expanded: List[str] = []
    for raw in paths:
        candidate = Path(raw)
        if candidate.is_dir():
            expanded.extend(str(child) for child in sorted(candidate.glob("*.py")) if not child.name.startswith("_"))
        else:
            expanded.append(raw)
    return expanded


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in _expand_paths(paths):
        module = load_extension_module(path)
        api_version = getattr(module, "SIM_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise SimExtensionError(f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}")
        register = getattr(module, "sim_register", None)
        if not callable(register):
            raise SimExtensionError(f"Extension {path} must define callable sim_register(ext)")
        ext_name = str(getattr(module, "SIM_EXTENSION_NAME", Path(path).stem))
        register(ExtensionAPI(services=services, ext_name=ext_name))
    return services
