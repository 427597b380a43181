"""Tests for the function library."""

import pytest

from scvmm.remote.library import REQUIRED_FUNCTIONS, FunctionLibrary, LibraryError, load_function_scripts


@pytest.fixture
def script_dir(tmp_path):
    (tmp_path / "GetVM.ps1").write_text("param($VMName)\nGet-SCVirtualMachine -Name $VMName\n")
    (tmp_path / "StartVM.ps1").write_text("\ufeffparam($VMName)\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path


class TestLoadFunctionScripts:
    """Test loading script bodies."""

    def test_load(self, script_dir):
        scripts = load_function_scripts(str(script_dir))

        assert sorted(scripts) == ["GetVM", "StartVM"]
        assert scripts["StartVM"] == "param($VMName)\n"

    def test_cached_and_read_only(self, script_dir):
        scripts = load_function_scripts(str(script_dir))

        assert load_function_scripts(str(script_dir)) is scripts
        with pytest.raises(TypeError):
            scripts["GetVM"] = "changed"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(LibraryError):
            load_function_scripts(str(tmp_path / "nope"))


class TestFunctionLibrary:
    """Test the registry."""

    def test_overrides_win(self):
        library = FunctionLibrary({"GetVM": "base", "StartVM": "start"}, {"GetVM": "override"})

        assert library.body("GetVM") == "override"
        assert library.body("StartVM") == "start"

    def test_with_overrides_keeps_original(self):
        library = FunctionLibrary({"GetVM": "base"})

        derived = library.with_overrides({"GetVM": "override", "ConnectSCVMM": ""})

        assert library.body("GetVM") == "base"
        assert derived.body("GetVM") == "override"
        assert "ConnectSCVMM" in derived
        assert len(derived) == 2

    def test_missing(self):
        library = FunctionLibrary({"GetVM": "x"})

        assert "GetVM" not in library.missing()
        assert len(library.missing()) == len(REQUIRED_FUNCTIONS) - 1

    def test_load_without_directory(self):
        library = FunctionLibrary.load(None, {"GetVM": "x"})

        assert list(library) == ["GetVM"]

    def test_preamble(self):
        library = FunctionLibrary({"StartVM": "'start'", "GetVM": "'get'"})

        preamble = library.preamble()

        assert "$ProgressPreference = 'SilentlyContinue'" in preamble
        assert "function GetVM {\n'get'\n}" in preamble
        assert "function StartVM {\n'start'\n}" in preamble
        assert preamble.index("function GetVM") < preamble.index("function StartVM")
