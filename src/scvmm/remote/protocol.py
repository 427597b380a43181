"""Request/response convention layered on a remote session.

A call sends one function invocation and decodes the single JSON document the
function writes to its output stream into ``VMResult`` or ``VMSpecResult``.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Type, TypeVar

from pydantic import ValidationError

from scvmm.models.machine import DiskSpec, ScvmmMachine
from scvmm.models.result import VMResult, VMSpecResult
from scvmm.remote.quoting import format_command
from scvmm.remote.session import RawOutput, RemoteSession, TransportError


logger = logging.getLogger(__name__)

MIB = 1024 * 1024

ResultT = TypeVar("ResultT", VMResult, VMSpecResult)


def disks_json(disks: List[DiskSpec]) -> str:
    """Disk list as passed to CreateVM and ExpandVMDisks; sizes in MiB."""
    payload = []
    for disk in disks:
        entry: Dict[str, Any] = {"sizeMB": (disk.size or 0) // MIB}
        if disk.vh_disk:
            entry["vhDisk"] = disk.vh_disk
        entry["dynamic"] = disk.dynamic
        payload.append(entry)
    return json.dumps(payload, separators=(",", ":"))


def decode_result(raw: RawOutput, model: Type[ResultT]) -> ResultT:
    """Decode the output of a call; malformed output is a transport error."""
    try:
        document = json.loads(raw.stdout)
        if not isinstance(document, dict):
            raise ValueError(f"expected a JSON object, got {type(document).__name__}")
        return model.model_validate(document)
    except (ValueError, ValidationError) as e:
        raise TransportError(
            f"Decode result error: {e}: {raw.stdout}  (stderr={raw.stderr})"
        ) from e


class CommandProtocol:
    """Issues named function calls over an open session."""

    def __init__(self, session: RemoteSession, debug: bool = False):
        self.session = session
        self.debug = debug

    async def _send(self, command: str) -> RawOutput:
        if self.debug:
            logger.debug(f"Sending command: {command}")
        raw = await asyncio.to_thread(self.session.invoke, command)
        if self.debug:
            logger.debug(f"Got result: stdout={raw.stdout!r} stderr={raw.stderr!r}")
        return raw

    async def call(self, function: str, **params: Any) -> VMResult:
        """Call ``function`` with escaped parameters, e.g. ``call("GetVM", VMName=name)``."""
        raw = await self._send(format_command(function, params))
        return decode_result(raw, VMResult)

    async def call_spec(self, function: str, machine: ScvmmMachine) -> VMSpecResult:
        """Call ``function`` with the full desired spec and metadata as JSON."""
        spec = machine.spec.model_dump(mode="json", by_alias=True, exclude_none=True)
        metadata = machine.metadata.model_dump(mode="json", by_alias=True, exclude_none=True)
        raw = await self._send(format_command(function, {
            "spec": json.dumps(spec, separators=(",", ":")),
            "metadata": json.dumps(metadata, separators=(",", ":")),
        }))
        return decode_result(raw, VMSpecResult)
