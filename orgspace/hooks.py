"""
orgspace/hooks.py

Registry of plugin hooks that run before (pre) and after (post) an API
endpoint's core operation.

The registry is filled once at startup and frozen; request handling only
reads it. When plugins are disabled the application binds EmptyHookRegistry
instead, so the pipeline never has to branch on the feature flag.

Hook source module contract (server.plugins.module):

    plugin_functions = {
        "createProject": {"pre": [check_quota], "post": [notify]},
        ...
    }

Each hook is called as hook(ctx) and may be a coroutine function. ctx is the
RequestContext: the request is ctx.method, ctx.path, ctx.params, ctx.body and
ctx.acting_identity; the response is ctx.locals (what the core operation
will send) and ctx.response (status, headers, send). A hook that calls
ctx.response.send() ends the request with that response.
"""

from __future__ import annotations

import importlib
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from orgspace.config import Settings
from orgspace.context import RequestContext
from orgspace.errors import HookConfigurationError
from orgspace.logger import get_logger

logger = get_logger(__name__)

HookFn = Callable[[RequestContext], Union[None, Awaitable[None]]]


class Phase(str, Enum):
    pre = "pre"
    post = "post"


class EndpointHooks:
    """Ordered pre and post hooks for one endpoint."""

    __slots__ = ("pre", "post")

    def __init__(self, pre: Iterable[HookFn] = (), post: Iterable[HookFn] = ()):
        self.pre: Tuple[HookFn, ...] = tuple(pre)
        self.post: Tuple[HookFn, ...] = tuple(post)


EMPTY_HOOKS = EndpointHooks()


class HookRegistry:
    """
    Endpoint name -> EndpointHooks.

    Hooks run in registration order. Registering after freeze() is a bug
    (the table is shared by concurrent requests) and raises.
    """

    def __init__(self):
        self._table: Dict[str, Dict[Phase, List[HookFn]]] = {}
        self._frozen: Optional[Dict[str, EndpointHooks]] = None

    def declare(self, endpoint: str) -> None:
        """Make an endpoint known to the registry, even with no hooks."""
        self._check_mutable()
        self._table.setdefault(endpoint, {Phase.pre: [], Phase.post: []})

    def register(self, endpoint: str, phase: Union[Phase, str], fn: HookFn) -> None:
        self._check_mutable()
        phase = Phase(phase)
        if not callable(fn):
            raise HookConfigurationError(f"Hook for {endpoint}.{phase.value} is not callable: {fn!r}")
        self.declare(endpoint)
        self._table[endpoint][phase].append(fn)

    def freeze(self) -> "HookRegistry":
        self._frozen = {
            endpoint: EndpointHooks(phases[Phase.pre], phases[Phase.post])
            for endpoint, phases in self._table.items()
        }
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen is not None

    def endpoints(self) -> List[str]:
        return list(self._table)

    def hooks_for(self, endpoint: str) -> EndpointHooks:
        table = self._frozen if self._frozen is not None else {}
        return table.get(endpoint, EMPTY_HOOKS)

    def validate(self, endpoints: Iterable[str]) -> None:
        """
        Ensure every served endpoint has an entry.

        Raises:
            HookConfigurationError: Listing the endpoints with no entry
        """
        missing = sorted(set(endpoints) - set(self._table))
        if missing:
            raise HookConfigurationError(f"No plugin hook entry for endpoint(s): {', '.join(missing)}")

    @classmethod
    def from_table(cls, table: Mapping[str, Mapping[str, Iterable[HookFn]]], endpoints: Iterable[str]) -> "HookRegistry":
        """
        Build a frozen registry from a plugin_functions-style table.

        Args:
            table: {endpoint: {"pre": [...], "post": [...]}}
            endpoints: Every endpoint the application serves

        Raises:
            HookConfigurationError: If the table is malformed or incomplete
        """
        registry = cls()
        for endpoint, phases in table.items():
            if not isinstance(phases, Mapping):
                raise HookConfigurationError(f"Hook entry for {endpoint} must be a mapping with 'pre'/'post'")
            registry.declare(endpoint)
            for phase in Phase:
                for fn in phases.get(phase.value, ()):
                    registry.register(endpoint, phase, fn)
        registry.validate(endpoints)
        return registry.freeze()

    def _check_mutable(self) -> None:
        if self._frozen is not None:
            raise HookConfigurationError("Hook registry is frozen; hooks can only be registered at startup")


class EmptyHookRegistry(HookRegistry):
    """Bound when plugins are disabled: every endpoint has no hooks."""

    def __init__(self):
        super().__init__()
        self.freeze()

    def hooks_for(self, endpoint: str) -> EndpointHooks:
        return EMPTY_HOOKS


def load_hook_registry(settings: Settings, endpoints: Iterable[str]) -> HookRegistry:
    """
    Resolve the hook registry once, at startup.

    Args:
        settings: Loaded configuration (server.plugins.*)
        endpoints: Every endpoint the application serves

    Returns:
        EmptyHookRegistry when plugins are disabled, otherwise a frozen
        registry built from the plugin module's plugin_functions table.

    Raises:
        HookConfigurationError: Plugins enabled but the module or table is
            missing, malformed, or lacks an endpoint
    """
    if not settings.plugins_enabled:
        logger.info("Plugins disabled; no endpoint hooks registered")
        return EmptyHookRegistry()

    module_name = settings.server.plugins.module
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HookConfigurationError(f"Cannot import plugin module {module_name}: {e}") from e

    table: Any = getattr(module, "plugin_functions", None)
    if not isinstance(table, Mapping):
        raise HookConfigurationError(f"Plugin module {module_name} does not define a plugin_functions mapping")

    registry = HookRegistry.from_table(table, endpoints)
    logger.info("Plugin hooks loaded", module=module_name, endpoints=len(registry.endpoints()))
    return registry
