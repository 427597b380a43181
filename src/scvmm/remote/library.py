"""Named PowerShell functions seeded into every remote session."""

import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from jinja2 import Environment, StrictUndefined, TemplateError


logger = logging.getLogger(__name__)


# Functions the reconciler calls; each emits one JSON document per call
REQUIRED_FUNCTIONS = (
    "ConnectSCVMM",
    "GetVM",
    "ReadVM",
    "GenerateVMName",
    "CreateVM",
    "AddVMSpec",
    "ExpandVMDisks",
    "AddIsoToVM",
    "StartVM",
    "RemoveVM",
    "CreateADComputer",
    "RemoveADComputer",
)

# Keeps incidental progress and diagnostic records off the output stream
PREAMBLE_TEMPLATE = """\
$ProgressPreference = 'SilentlyContinue'
$WarningPreference = 'SilentlyContinue'
$VerbosePreference = 'SilentlyContinue'
$InformationPreference = 'SilentlyContinue'
$DebugPreference = 'SilentlyContinue'

{% for name, body in functions %}
function {{ name }} {
{{ body }}
}

{% endfor %}
"""

_environment = Environment(keep_trailing_newline=True, undefined=StrictUndefined)
_preamble = _environment.from_string(PREAMBLE_TEMPLATE)


class LibraryError(Exception):
    """Function scripts could not be loaded."""
    pass


@lru_cache(maxsize=None)
def load_function_scripts(script_dir: str) -> Mapping[str, str]:
    """Load ``*.ps1`` bodies from a directory, keyed by file stem.

    Loaded once per process per directory; the returned mapping is read-only.
    """
    directory = Path(script_dir)
    if not directory.is_dir():
        raise LibraryError(f"Script directory not found: {directory}")
    scripts: Dict[str, str] = {}
    for script_file in sorted(directory.glob("*.ps1")):
        try:
            scripts[script_file.stem] = script_file.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise LibraryError(f"Error reading script file {script_file}: {e}") from e
    logger.info(f"Loaded {len(scripts)} function scripts from {directory}")
    return MappingProxyType(scripts)


class FunctionLibrary:
    """Read-only registry of named function bodies.

    Override entries take precedence over base entries of the same name.
    """

    def __init__(self, functions: Mapping[str, str], overrides: Optional[Mapping[str, str]] = None):
        merged = dict(functions)
        merged.update(overrides or {})
        self._functions: Mapping[str, str] = MappingProxyType(merged)

    @classmethod
    def load(cls, script_dir: Optional[str], overrides: Optional[Mapping[str, str]] = None) -> "FunctionLibrary":
        """Build a library from the cached script directory plus overrides."""
        base = load_function_scripts(str(script_dir)) if script_dir else {}
        library = cls(base, overrides)
        missing = library.missing()
        if missing:
            logger.warning(f"Function library is missing: {', '.join(missing)}")
        return library

    def with_overrides(self, overrides: Mapping[str, str]) -> "FunctionLibrary":
        return FunctionLibrary(self._functions, overrides)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._functions))

    def __len__(self) -> int:
        return len(self._functions)

    def body(self, name: str) -> str:
        return self._functions[name]

    def missing(self) -> List[str]:
        return [name for name in REQUIRED_FUNCTIONS if name not in self._functions]

    def preamble(self) -> str:
        """Script defining every function, sent once when a session opens."""
        functions = [(name, self._functions[name]) for name in self]
        try:
            return _preamble.render(functions=functions)
        except TemplateError as e:
            raise LibraryError(f"Failed to render function library: {e}") from e
