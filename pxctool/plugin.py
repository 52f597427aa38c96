"""Discovery of external component executables on the search path."""

from __future__ import annotations

import os
import stat
import sys
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

VALID_PLUGIN_FILENAME_PREFIXES = ("pxc",)

_WINDOWS_EXECUTABLE_EXTENSIONS = frozenset({".bat", ".cmd", ".com", ".exe", ".ps1"})

FindCommand = Callable[[list], "str | None"]


@dataclass
class Component:
    """A discovered component executable and any warnings about it."""

    path: str
    warnings: list[str] = field(default_factory=list)


class CommandOverrideVerifier:
    """Warns about components that are not executable, shadowed, or clash with commands.

    ``find_command`` receives a command path as a list of names and returns
    the full path of an existing command, or None if there is none.
    """

    def __init__(self, find_command: FindCommand | None = None) -> None:
        self._find_command = find_command
        self._seen_plugins: dict[str, str] = {}

    def verify(self, path: str) -> list[str]:
        """Return the warnings for the component at ``path``."""
        if self._find_command is None:
            return ["unable to verify path with nil root"]

        bin_name = path.split("/")[-1]
        cmd_path = bin_name.split("-")
        if len(cmd_path) > 1:
            cmd_path = cmd_path[1:]

        warnings: list[str] = []
        try:
            if not is_executable(path):
                warnings.append(
                    f"warning: {path} identified as a pxc component, "
                    "but it is not executable"
                )
        except OSError as err:
            warnings.append(
                f"error: unable to identify {path} as an executable file: {err}"
            )

        existing = self._seen_plugins.get(bin_name)
        if existing is not None:
            warnings.append(
                f"warning: {path} is overshadowed by a similarly named "
                f"component: {existing}"
            )
        else:
            self._seen_plugins[bin_name] = path

        command = self._find_command(cmd_path)
        if command is not None:
            warnings.append(
                f'warning: {bin_name} overwrites existing command: "{command}"'
            )

        return warnings


@dataclass
class PluginLister:
    """Lists component executables found in a set of directories."""

    verifier: CommandOverrideVerifier | None = None
    name_only: bool = False
    plugin_paths: list[str] = field(default_factory=list)

    def complete(self, find_command: FindCommand | None, config_dir: str) -> None:
        """Use the PATH directories plus ``<config_dir>/bin`` and a fresh verifier."""
        self.verifier = CommandOverrideVerifier(find_command)
        search_path = os.environ.get("PATH", "")
        self.plugin_paths = [p for p in search_path.split(os.pathsep) if p] if search_path else []
        self.plugin_paths.append(os.path.join(config_dir, "bin"))

    def get_list(self) -> list[Component]:
        """Return every component found, in directory order then name order."""
        components: list[Component] = []
        for directory in unique_paths_list(self.plugin_paths):
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError:
                continue

            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    continue
                if not has_valid_prefix(entry.name, VALID_PLUGIN_FILENAME_PREFIXES):
                    continue

                full_path = os.path.join(directory, entry.name)
                component = Component(entry.name if self.name_only else full_path)
                if self.verifier is not None:
                    component.warnings.extend(self.verifier.verify(full_path))
                components.append(component)
        return components

    def get_sorted_root_components(self) -> list[str]:
        """Return the sorted names of top-level components, without the prefix."""
        names = []
        for component in self.get_list():
            name = component.path.removeprefix("pxc-")
            if "-" in name:
                continue
            names.append(name)
        return sorted(names)


def is_executable(full_path: str) -> bool:
    """Return True if the file can be executed; raise OSError if it cannot be read."""
    info = os.stat(full_path)
    if sys.platform == "win32":
        ext = os.path.splitext(full_path)[1].lower()
        return ext in _WINDOWS_EXECUTABLE_EXTENSIONS
    return not stat.S_ISDIR(info.st_mode) and bool(info.st_mode & 0o111)


def unique_paths_list(paths: Iterable[str]) -> list[str]:
    """Drop duplicates, keeping the first occurrence and the original order."""
    return list(dict.fromkeys(paths))


def has_valid_prefix(filepath: str, valid_prefixes: Sequence[str]) -> bool:
    """Return True if the name starts with one of the prefixes followed by a dash."""
    return any(filepath.startswith(prefix + "-") for prefix in valid_prefixes)