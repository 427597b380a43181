"""Shared fixtures for controller tests."""

import json
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from scvmm.controller.cloudinit import CloudInitMedia
from scvmm.controller.deletion import MACHINE_FINALIZER
from scvmm.controller.reconciler import MachineReconciler
from scvmm.controller.store import FileStore
from scvmm.models.config import ControllerConfig
from scvmm.models.machine import ScvmmMachine
from scvmm.remote.library import REQUIRED_FUNCTIONS, FunctionLibrary
from scvmm.remote.session import RawOutput

ENVIRON = {
    "SCVMM_HOST": "vmm01.example.com",
    "SCVMM_USERNAME": "svc-vmm",
    "SCVMM_PASSWORD": "s3cret",
}


class FakeSession:
    """Remote session answering each function from a list of canned results.

    The last canned result of a function is repeated once the list runs out.
    An exception instance in the list is raised instead of answered.
    """

    def __init__(self, responses: Dict[str, Any]):
        self.responses = {
            name: list(value) if isinstance(value, list) else [value]
            for name, value in responses.items()
        }
        self.commands: List[str] = []
        self.closed = False

    @property
    def functions(self) -> List[str]:
        return [command.split(" ", 1)[0] for command in self.commands]

    def command(self, function: str) -> str:
        for command in self.commands:
            if command.split(" ", 1)[0] == function:
                return command
        raise AssertionError(f"{function} was not called")

    def invoke(self, command: str) -> RawOutput:
        self.commands.append(command)
        function = command.split(" ", 1)[0]
        answers = self.responses.get(function) or [{}]
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, str):
            return RawOutput(stdout=answer)
        return RawOutput(stdout=json.dumps(answer))

    def close(self):
        self.closed = True


def write_records(store_dir: Path, kind: str, text: str):
    directory = store_dir / kind
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "records.yaml").write_text(text)


@pytest.fixture
def store(tmp_path):
    """File store in a temporary directory."""
    return FileStore(tmp_path / "store")


@pytest.fixture
def media():
    """Cloud-init media that never touches a real share."""
    media = MagicMock(spec=CloudInitMedia)
    media.publish = AsyncMock(return_value="\\\\vmm01.example.com\\MSSCVMMLibrary\\ISOs\\cloud-init\\vm-001-cloud-init.iso")
    return media


@pytest.fixture
def library():
    return FunctionLibrary({name: f"'{name}'" for name in REQUIRED_FUNCTIONS})


@pytest.fixture
def make_reconciler(store, media, library):
    """Build a reconciler whose sessions are the given fake session."""

    def factory(session: FakeSession, config: ControllerConfig = None, environ=None) -> MachineReconciler:
        opened = []

        def session_factory(provider, lib):
            opened.append(provider)
            return session

        reconciler = MachineReconciler(
            store,
            config or ControllerConfig(),
            library=library,
            session_factory=session_factory,
            media=media,
            environ=ENVIRON if environ is None else environ,
        )
        reconciler.opened_sessions = opened
        return reconciler

    return factory


def standalone_machine(name: str = "web", **spec: Any) -> ScvmmMachine:
    """Machine with inline cloud-init and the finalizer already attached."""
    spec.setdefault("cloudInit", {"userData": "#cloud-config\n"})
    return ScvmmMachine.model_validate({
        "metadata": {"name": name, "namespace": "default", "finalizers": [MACHINE_FINALIZER]},
        "spec": spec,
    })


@pytest.fixture
def fake_session():
    """Factory for fake sessions: ``fake_session({"GetVM": {...}})``."""
    return FakeSession


@pytest.fixture
def new_machine():
    """Factory for standalone machine records."""
    return standalone_machine


@pytest.fixture
def records(store):
    """Writer for dependency records: ``records("clusters", yaml_text)``."""
    return lambda kind, text: write_records(store.store_dir, kind, text)
