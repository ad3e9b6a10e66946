"""
StoatBot - Command Registry
===========================

Name and alias lookup for loaded command descriptors.

DESIGN:
    Names and aliases share one case-insensitive namespace, so a new
    descriptor is rejected if any of its names is already taken.

    resolve() is on the per-message path and is fronted by a TTL cache;
    unregister() invalidates every name the descriptor answered to.
"""

import time
from typing import Callable, Dict, List, Optional

from stoatbot.commands.base import (
    ArgSpec,
    CommandDescriptor,
    CommandFlags,
    RateLimitPolicy,
)
from stoatbot.core import constants
from stoatbot.utils.cache import TTLCache


class RegistrationError(ValueError):
    """Descriptor is malformed or collides with a registered name."""


def validate_descriptor(descriptor: CommandDescriptor) -> None:
    """
    Check a descriptor's shape once, before it is registered.

    Raises:
        RegistrationError: On the first problem found.
    """
    if not isinstance(descriptor, CommandDescriptor):
        raise RegistrationError(f"setup() returned {type(descriptor).__name__}, not a CommandDescriptor")
    if not isinstance(descriptor.name, str) or not descriptor.name.strip():
        raise RegistrationError("Command has no name")
    if any(ch.isspace() for ch in descriptor.name):
        raise RegistrationError(f"Command name {descriptor.name!r} contains whitespace")
    if not callable(descriptor.execute):
        raise RegistrationError(f"Command {descriptor.name!r} has no callable execute")
    if not isinstance(descriptor.aliases, tuple) or not all(
        isinstance(alias, str) and alias.strip() and not any(ch.isspace() for ch in alias)
        for alias in descriptor.aliases
    ):
        raise RegistrationError(f"Command {descriptor.name!r} has invalid aliases")
    if not isinstance(descriptor.flags, CommandFlags):
        raise RegistrationError(f"Command {descriptor.name!r} flags must be CommandFlags")
    if not isinstance(descriptor.args, ArgSpec):
        raise RegistrationError(f"Command {descriptor.name!r} args must be ArgSpec")
    if descriptor.rate_limit is not None and not isinstance(descriptor.rate_limit, RateLimitPolicy):
        raise RegistrationError(f"Command {descriptor.name!r} rate_limit must be RateLimitPolicy")
    if descriptor.validate is not None and not callable(descriptor.validate):
        raise RegistrationError(f"Command {descriptor.name!r} validate must be callable")
    if len(set(descriptor.names)) != len(descriptor.names):
        raise RegistrationError(f"Command {descriptor.name!r} repeats a name in its aliases")


class CommandRegistry:
    """Registered descriptors by name, with alias indirection."""

    def __init__(
        self,
        cache_ttl: float = constants.COMMAND_CACHE_TTL,
        cache_size: int = constants.COMMAND_CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._commands: Dict[str, CommandDescriptor] = {}
        self._aliases: Dict[str, str] = {}
        self._cache: TTLCache[str, CommandDescriptor] = TTLCache(
            cache_ttl,
            max_size=cache_size,
            clock=clock,
        )

    def register(self, descriptor: CommandDescriptor) -> None:
        """
        Add a descriptor under its name and aliases.

        Raises:
            RegistrationError: Malformed descriptor or a name already in use.
        """
        validate_descriptor(descriptor)
        for name in descriptor.names:
            if name in self._commands or name in self._aliases:
                raise RegistrationError(f"Name {name!r} is already registered")

        name = descriptor.name.lower()
        self._commands[name] = descriptor
        for alias in descriptor.names[1:]:
            self._aliases[alias] = name

    def unregister(self, name: str) -> Optional[CommandDescriptor]:
        """Remove a command by name or alias. Returns the removed descriptor."""
        descriptor = self.get(name)
        if descriptor is None:
            return None

        del self._commands[descriptor.name.lower()]
        for alias in descriptor.names[1:]:
            self._aliases.pop(alias, None)
        for key in descriptor.names:
            self._cache.delete(key)
        return descriptor

    def get(self, name: str) -> Optional[CommandDescriptor]:
        """Uncached lookup by name or alias."""
        name = name.lower()
        descriptor = self._commands.get(name)
        if descriptor is None and name in self._aliases:
            descriptor = self._commands.get(self._aliases[name])
        return descriptor

    def resolve(self, name: str) -> Optional[CommandDescriptor]:
        """Cached lookup by name or alias."""
        name = name.lower()
        descriptor = self._cache.get(name)
        if descriptor is not None:
            return descriptor

        descriptor = self.get(name)
        if descriptor is not None:
            self._cache.set(name, descriptor)
        return descriptor

    def all(self) -> List[CommandDescriptor]:
        return list(self._commands.values())

    def by_category(self) -> Dict[str, List[CommandDescriptor]]:
        grouped: Dict[str, List[CommandDescriptor]] = {}
        for descriptor in self._commands.values():
            grouped.setdefault(descriptor.category, []).append(descriptor)
        return grouped

    def cleanup_cache(self) -> int:
        return self._cache.cleanup_expired()

    def clear(self) -> None:
        self._commands.clear()
        self._aliases.clear()
        self._cache.clear()

    @property
    def alias_count(self) -> int:
        return len(self._aliases)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


__all__ = ["CommandRegistry", "RegistrationError", "validate_descriptor"]
