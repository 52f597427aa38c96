import os

import pytest

from pxctool.plugin import (
    CommandOverrideVerifier,
    Component,
    PluginLister,
    has_valid_prefix,
    is_executable,
    unique_paths_list,
)


def make_file(directory, name, executable=True):
    path = directory / name
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755 if executable else 0o644)
    return path


def no_commands(cmd_path):
    return None


def test_unique_paths_list_keeps_order():
    assert unique_paths_list(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_has_valid_prefix():
    assert has_valid_prefix("pxc-foo", ["pxc"])
    assert not has_valid_prefix("pxcfoo", ["pxc"])
    assert not has_valid_prefix("kubectl-foo", ["pxc"])
    assert has_valid_prefix("other-foo", ["pxc", "other"])


def test_is_executable(tmp_path):
    exe = make_file(tmp_path, "pxc-run")
    plain = make_file(tmp_path, "pxc-text", executable=False)
    assert is_executable(str(exe)) is True
    assert is_executable(str(plain)) is False
    assert is_executable(str(tmp_path)) is False


def test_is_executable_missing_file(tmp_path):
    with pytest.raises(OSError):
        is_executable(str(tmp_path / "missing"))


def test_get_list_name_only(tmp_path):
    make_file(tmp_path, "pxc-foo")
    make_file(tmp_path, "pxc-bar-baz")
    make_file(tmp_path, "unrelated")
    (tmp_path / "pxc-dir").mkdir()
    lister = PluginLister(
        verifier=CommandOverrideVerifier(no_commands),
        name_only=True,
        plugin_paths=[str(tmp_path)],
    )
    components = lister.get_list()
    assert components == [Component("pxc-bar-baz"), Component("pxc-foo")]


def test_get_list_full_path_and_missing_dirs(tmp_path):
    make_file(tmp_path, "pxc-foo")
    lister = PluginLister(
        verifier=CommandOverrideVerifier(no_commands),
        plugin_paths=[str(tmp_path / "nope"), str(tmp_path), str(tmp_path)],
    )
    components = lister.get_list()
    assert [c.path for c in components] == [os.path.join(str(tmp_path), "pxc-foo")]
    assert components[0].warnings == []


def test_not_executable_warning(tmp_path):
    path = make_file(tmp_path, "pxc-foo", executable=False)
    warnings = CommandOverrideVerifier(no_commands).verify(str(path))
    assert len(warnings) == 1
    assert "not executable" in warnings[0]
    assert str(path) in warnings[0]


def test_shadowed_component_warning(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    first.mkdir()
    second.mkdir()
    make_file(first, "pxc-foo")
    make_file(second, "pxc-foo")
    lister = PluginLister(
        verifier=CommandOverrideVerifier(no_commands),
        plugin_paths=[str(first), str(second)],
    )
    components = lister.get_list()
    assert components[0].warnings == []
    assert len(components[1].warnings) == 1
    assert "overshadowed" in components[1].warnings[0]
    assert os.path.join(str(first), "pxc-foo") in components[1].warnings[0]


def test_overwrite_existing_command_warning(tmp_path):
    path = make_file(tmp_path, "pxc-volume")
    seen = []

    def find(cmd_path):
        seen.append(cmd_path)
        return "pxc volume" if cmd_path == ["volume"] else None

    warnings = CommandOverrideVerifier(find).verify(str(path))
    assert seen == [["volume"]]
    assert warnings == ['warning: pxc-volume overwrites existing command: "pxc volume"']


def test_verify_without_root():
    assert CommandOverrideVerifier(None).verify("/bin/pxc-foo") == [
        "unable to verify path with nil root"
    ]


def test_sorted_root_components(tmp_path):
    make_file(tmp_path, "pxc-zeta")
    make_file(tmp_path, "pxc-alpha")
    make_file(tmp_path, "pxc-alpha-sub")
    lister = PluginLister(
        verifier=CommandOverrideVerifier(no_commands),
        name_only=True,
        plugin_paths=[str(tmp_path)],
    )
    assert lister.get_sorted_root_components() == ["alpha", "zeta"]


def test_complete_uses_path_and_config_dir(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    make_file(bin_dir, "pxc-local")
    monkeypatch.setenv("PATH", str(tmp_path / "elsewhere"))
    lister = PluginLister(name_only=True)
    lister.complete(no_commands, str(tmp_path))
    assert lister.plugin_paths == [str(tmp_path / "elsewhere"), str(bin_dir)]
    assert [c.path for c in lister.get_list()] == ["pxc-local"]