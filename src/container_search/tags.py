"""Registry of tag providers that enrich items with searchable tags.

Providers are plain callables returning the tags for an item. The registry
is copy-on-write: registration swaps an immutable snapshot under a lock,
while tag collection iterates whatever snapshot was current when it
started and never blocks.
"""

import threading
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from loguru import logger

from container_search.items import Item


class TagProvider(Protocol):
    """Callable contributing tags for an item."""

    def __call__(self, item: Item) -> Iterable[str]: ...


@dataclass(frozen=True)
class ProviderOutcome:
    """Result of running one provider against one item.

    Exactly one of `tags` (on success) or `error` (on failure) is meaningful.
    """

    provider: TagProvider
    tags: frozenset[str] = field(default_factory=frozenset)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def provider_name(provider: TagProvider) -> str:
    return getattr(provider, "__name__", None) or type(provider).__name__


class TagProviderRegistry:
    """Ordered, thread-safe collection of tag providers."""

    def __init__(self, providers: Iterable[TagProvider] = ()):
        self._write_lock = threading.Lock()
        self._providers: tuple[TagProvider, ...] = tuple(providers)

    def register(self, provider: TagProvider) -> None:
        if provider is None:
            raise ValueError("provider must not be None")
        with self._write_lock:
            self._providers = self._providers + (provider,)
        logger.debug(f"Registered tag provider {provider_name(provider)}")

    def unregister(self, provider: TagProvider) -> bool:
        """Remove a provider. Returns False if it was not registered."""
        if provider is None:
            raise ValueError("provider must not be None")
        with self._write_lock:
            if provider not in self._providers:
                return False
            remaining = list(self._providers)
            remaining.remove(provider)
            self._providers = tuple(remaining)
        return True

    @property
    def providers(self) -> tuple[TagProvider, ...]:
        return self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def collect_outcomes(self, item: Item) -> list[ProviderOutcome]:
        """Run every provider against the item, isolating failures.

        Args:
            item: Item to tag

        Returns:
            One outcome per provider, in registration order
        """
        if item is None:
            raise ValueError("item must not be None")

        outcomes = []
        for provider in self._providers:
            try:
                tags = frozenset(tag for tag in provider(item) if tag)
            except Exception as e:
                logger.debug(
                    f"Tag provider {provider_name(provider)} failed for {item.material}: {e}"
                )
                outcomes.append(ProviderOutcome(provider=provider, error=e))
            else:
                outcomes.append(ProviderOutcome(provider=provider, tags=tags))
        return outcomes

    def collect_tags(self, item: Item) -> set[str]:
        """Union of the tags from every provider that succeeded."""
        tags: set[str] = set()
        for outcome in self.collect_outcomes(item):
            tags.update(outcome.tags)
        return tags
