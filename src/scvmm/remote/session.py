"""Stateful PowerShell session on the execution host.

One runspace pool is opened per session, so functions defined by the library
preamble stay available to every later invocation. Calls are blocking; the
async layers above run them in worker threads.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pypsrp.powershell import PowerShell, RunspacePool
from pypsrp.wsman import WSMan

from scvmm.models.config import WinRMConfig
from scvmm.models.provider import ProviderSpec
from scvmm.remote.library import FunctionLibrary
from scvmm.remote.quoting import format_command


logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The remote channel failed or produced an undecodable answer."""
    pass


@dataclass
class RawOutput:
    """Text produced by one invocation."""
    stdout: str = ""
    stderr: str = ""


class RemoteSession:
    """Authenticated command channel with the function library loaded."""

    def __init__(self, provider: ProviderSpec, library: FunctionLibrary,
                 winrm: Optional[WinRMConfig] = None, debug: bool = False):
        self.provider = provider
        self.library = library
        self.winrm = winrm or WinRMConfig()
        self.debug = debug
        self._wsman: Optional[WSMan] = None
        self._pool: Optional[RunspacePool] = None

    @classmethod
    def open(cls, provider: ProviderSpec, library: FunctionLibrary,
             winrm: Optional[WinRMConfig] = None, debug: bool = False) -> "RemoteSession":
        """Open and seed a session; never returns a partially opened one."""
        session = cls(provider, library, winrm=winrm, debug=debug)
        try:
            session._connect()
            session._seed()
        except TransportError:
            session.close()
            raise
        except Exception as e:
            session.close()
            raise TransportError(f"Opening session on {provider.exec_host}: {e}") from e
        return session

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def _connect(self):
        if self.debug:
            logger.debug(f"Creating WinRM connection to {self.provider.exec_host}:{self.winrm.port}")
        self._wsman = WSMan(
            self.provider.exec_host,
            port=self.winrm.port,
            ssl=self.winrm.ssl,
            auth=self.winrm.auth,
            username=self.provider.scvmm_username,
            password=self.provider.scvmm_password,
            cert_validation=self.winrm.cert_validation,
            operation_timeout=self.winrm.operation_timeout,
            read_timeout=self.winrm.read_timeout,
        )
        pool = RunspacePool(self._wsman)
        pool.open()
        self._pool = pool

    def _seed(self):
        if self.debug:
            self._ping("before loading functions")
            logger.debug(f"Sending {len(self.library)} library functions")
        self._run(self.library.preamble())
        if self.debug:
            logger.debug("Calling ConnectSCVMM")
        connect = format_command("ConnectSCVMM", {
            "Host": self.provider.scvmm_host,
            "Username": self.provider.scvmm_username,
            "Password": self.provider.scvmm_password,
        })
        output = self._run(connect + "\n'OK'")
        self._check_ok(output, "after loading functions")

    def _ping(self, stage: str):
        output = self._run("'OK'")
        if self.debug:
            logger.debug(f"Got ping {stage}: stdout={output.stdout!r} stderr={output.stderr!r}")
        self._check_ok(output, stage)

    @staticmethod
    def _check_ok(output: RawOutput, stage: str):
        lines = output.stdout.strip().splitlines()
        if not lines or lines[-1].strip() != "OK":
            raise TransportError(
                f"Session check {stage} failed: {output.stdout} (stderr={output.stderr})"
            )

    def _run(self, script: str) -> RawOutput:
        ps = PowerShell(self._pool)
        ps.add_script(script)
        results = ps.invoke()
        stdout = "\n".join(str(r) for r in results if r is not None)
        stderr = "\n".join(str(e) for e in ps.streams.error)
        return RawOutput(stdout=stdout, stderr=stderr)

    def invoke(self, command: str) -> RawOutput:
        """Send one command line and collect its output."""
        if self._pool is None:
            raise TransportError("Session is not open")
        try:
            return self._run(command)
        except Exception as e:
            raise TransportError(f"Sending command to {self.provider.exec_host}: {e}") from e

    def close(self):
        """Close the session; safe to call repeatedly and after a failed open."""
        pool, self._pool = self._pool, None
        wsman, self._wsman = self._wsman, None
        if pool is not None:
            try:
                pool.close()
            except Exception as e:
                logger.warning(f"Failed to close runspace pool on {self.provider.exec_host}: {e}")
        if wsman is not None:
            try:
                wsman.close()
            except Exception as e:
                logger.debug(f"Failed to close WinRM transport: {e}")

    def __enter__(self) -> "RemoteSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
