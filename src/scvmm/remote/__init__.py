"""Remote command channel to the SCVMM execution host."""

from scvmm.remote.library import FunctionLibrary, LibraryError, load_function_scripts
from scvmm.remote.protocol import CommandProtocol, decode_result, disks_json
from scvmm.remote.quoting import escape_single_quotes, format_command
from scvmm.remote.session import RawOutput, RemoteSession, TransportError

__all__ = [
    "CommandProtocol",
    "FunctionLibrary",
    "LibraryError",
    "RawOutput",
    "RemoteSession",
    "TransportError",
    "decode_result",
    "disks_json",
    "escape_single_quotes",
    "format_command",
    "load_function_scripts",
]
