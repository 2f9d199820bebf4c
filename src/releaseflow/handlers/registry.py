from __future__ import annotations

from typing import Callable, ClassVar, Dict, Iterable, Optional, Tuple, Type, Union

from releaseflow.core.base_handler import BaseHandler
from releaseflow.models.categories import Category
from releaseflow.models.config_node import ConfigNode


HandlerKey = Tuple[Category, str]


class HandlerRegistryError(RuntimeError):
    pass


class HandlerRegistry:
    _registry: ClassVar[Dict[HandlerKey, Type[BaseHandler]]] = {}

    @classmethod
    def register(
        cls,
        *,
        category: Category,
        adapter: str,
        handler_class: Type[BaseHandler],
        overwrite: bool = False,
    ) -> None:
        key = (Category(category), adapter.lower())
        if not overwrite and key in cls._registry:
            existing = cls._registry[key]
            raise HandlerRegistryError(
                f"Handler already registered for category={key[0].value!r}, adapter={adapter!r}: {existing}"
            )
        cls._registry[key] = handler_class

    @classmethod
    def get(cls, category: Category, adapter: str) -> Type[BaseHandler]:
        key = (Category(category), adapter.lower())
        try:
            return cls._registry[key]
        except KeyError as exc:
            raise HandlerRegistryError(
                f"No handler registered for category={key[0].value!r}, adapter={adapter!r}"
            ) from exc

    @classmethod
    def try_get(cls, category: Category, adapter: str) -> Optional[Type[BaseHandler]]:
        return cls._registry.get((Category(category), adapter.lower()))

    @classmethod
    def for_node(cls, node: ConfigNode) -> Type[BaseHandler]:
        if node.category is None or node.adapter_key is None:
            raise HandlerRegistryError(f"Node {node.key!r} is not a handler node")
        return cls.get(node.category, node.adapter_key)

    @classmethod
    def clear(cls) -> None:
        cls._registry.clear()


def register_handler(
    *,
    category: Union[Category, str, Iterable[Category]],
    adapter: str,
    overwrite: bool = False,
) -> Callable[[Type[BaseHandler]], Type[BaseHandler]]:
    categories = [category] if isinstance(category, (Category, str)) else list(category)

    def decorator(handler_class: Type[BaseHandler]) -> Type[BaseHandler]:
        for item in categories:
            HandlerRegistry.register(
                category=item,
                adapter=adapter,
                handler_class=handler_class,
                overwrite=overwrite,
            )
        return handler_class

    return decorator
