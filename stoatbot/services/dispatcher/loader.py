"""
StoatBot - Command Loader
=========================

Imports command modules from the static category manifest.

DESIGN:
    stoatbot.commands.CATEGORIES lists category packages; each package
    lists its command modules in COMMANDS; each module exposes
    setup() -> CommandDescriptor.

    A category package that fails to import is fatal (FatalInitError).
    A single bad command module is skipped and counted as failed.
"""

import asyncio
import dataclasses
import importlib
import inspect
import sys
import time
from dataclasses import dataclass
from types import ModuleType
from typing import TYPE_CHECKING, Any, List, Optional

from stoatbot.commands.base import CommandDescriptor
from stoatbot.core.errors import FatalInitError
from stoatbot.core.logger import logger
from stoatbot.services.dispatcher.registry import RegistrationError, validate_descriptor

if TYPE_CHECKING:
    from stoatbot.services.dispatcher.registry import CommandRegistry


@dataclass
class CategoryLoadStats:
    category: str
    loaded: int = 0
    failed: int = 0
    elapsed: float = 0.0


def _import(module_path: str, reload: bool) -> ModuleType:
    if reload and module_path in sys.modules:
        return importlib.reload(sys.modules[module_path])
    return importlib.import_module(module_path)


async def load_command(
    module_path: str,
    category: str,
    client: Optional[Any] = None,
    reload: bool = False,
) -> CommandDescriptor:
    """
    Import a command module and build its descriptor.

    The returned descriptor records the module it came from, so it can be
    reloaded later. The optional init hook runs here, before registration.

    Raises:
        RegistrationError: No setup() or a malformed descriptor.
        Exception: Whatever the import or the init hook raised.
    """
    module = _import(module_path, reload)
    setup = getattr(module, "setup", None)
    if not callable(setup):
        raise RegistrationError(f"{module_path} has no setup()")

    descriptor = setup()
    validate_descriptor(descriptor)
    descriptor = dataclasses.replace(
        descriptor,
        module=module_path,
        category=descriptor.category or category,
    )

    if descriptor.init is not None:
        result = descriptor.init(client)
        if inspect.isawaitable(result):
            await result

    return descriptor


async def load_category(
    package_path: str,
    registry: "CommandRegistry",
    client: Optional[Any] = None,
    registered: Optional[List[str]] = None,
) -> CategoryLoadStats:
    """
    Load and register every command listed by a category package.

    Names of registered commands are appended to ``registered`` as they
    go in, so a caller that abandons the load can take them out again.

    Raises:
        FatalInitError: The category package cannot be imported or has no
            COMMANDS manifest.
    """
    category = package_path.rsplit(".", 1)[-1]
    stats = CategoryLoadStats(category=category)
    start = time.perf_counter()

    try:
        package = importlib.import_module(package_path)
    except Exception as e:
        raise FatalInitError(f"Cannot read command category {package_path}: {e}") from e

    modules = getattr(package, "COMMANDS", None)
    if not isinstance(modules, (list, tuple)):
        raise FatalInitError(f"Command category {package_path} has no COMMANDS list")

    for module_path in modules:
        # Let other categories interleave between modules
        await asyncio.sleep(0)
        try:
            descriptor = await load_command(module_path, category, client)
            registry.register(descriptor)
            if registered is not None:
                registered.append(descriptor.name)
            stats.loaded += 1
        except Exception as e:
            stats.failed += 1
            logger.warning("Command Load Failed", [
                ("Module", module_path),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])

    stats.elapsed = time.perf_counter() - start
    return stats


__all__ = ["CategoryLoadStats", "load_category", "load_command"]
