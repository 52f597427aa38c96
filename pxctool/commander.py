"""Two-phase registration of command setup callbacks."""

from __future__ import annotations

from typing import Callable

Callback = Callable[[], None]


class CommandRegistry:
    """Collects variable and flag initializers and runs them in order.

    All variable initializers run before any flag initializer, so commands
    can be set up in any registration order.
    """

    def __init__(self) -> None:
        self._var_inits: list[Callback] = []
        self._cmd_inits: list[Callback] = []

    def register_command_var(self, c: Callback) -> bool:
        """Register an initializer for a command object."""
        self._var_inits.append(c)
        return True

    def register_command_init(self, c: Callback) -> bool:
        """Register an initializer for a command's flags."""
        self._cmd_inits.append(c)
        return True

    def setup(self) -> None:
        """Run every variable initializer, then every flag initializer."""
        for init in list(self._var_inits):
            init()
        for init in list(self._cmd_inits):
            init()


_registry = CommandRegistry()


def register_command_var(c: Callback) -> bool:
    """Register a command-object initializer with the global registry."""
    return _registry.register_command_var(c)


def register_command_init(c: Callback) -> bool:
    """Register a flag initializer with the global registry."""
    return _registry.register_command_init(c)


def setup() -> None:
    """Run all initializers registered with the global registry."""
    _registry.setup()