"""Hydra ConfigStore registration for pipeline components."""

from __future__ import annotations

from typing import Any

from hydra.core.config_store import ConfigStore
from loguru import logger


def register(
    cls: type[Any] | None = None,
    *,
    group: str,
    name: str | None = None,
    partial: bool = False,
    **defaults: Any,
) -> type[Any] | Any:
    """Register a class as a selectable option of a Hydra config group.

    The stored node carries ``_target_`` for ``hydra.utils.instantiate`` plus
    ``defaults``.  Use ``partial=True`` for components that receive runtime
    arguments (e.g. the resolved ``DetectionConfig``) at instantiation time.

    Arguments:
        cls: The class to register (when used without parentheses).
        group: Config group, e.g. ``"stage"`` or ``"data"``.
        name: Option name within the group.  Defaults to the class name.
        partial: Emit ``_partial_: true`` so instantiation returns a factory.
        **defaults: Default values for constructor arguments.
    """

    def _store(target_cls: type[Any]) -> type[Any]:
        option = name or target_cls.__name__
        node: dict[str, Any] = {
            "_target_": f"{target_cls.__module__}.{target_cls.__qualname__}"
        }
        if partial:
            node["_partial_"] = True
        node.update(defaults)
        ConfigStore.instance().store(group=group, name=option, node=node)
        logger.debug(f"Registered {target_cls.__name__} as {group}={option}")
        return target_cls

    if cls is None:
        return _store
    return _store(cls)
