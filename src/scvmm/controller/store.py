"""Record store the reconciler reads from and patches into.

``FileStore`` keeps records as YAML documents in a directory tree::

    scvmmmachines/<namespace>/<name>.yaml   one machine record per file
    machines/*.yaml                         name -> cluster machine
    clusters/*.yaml                         name -> cluster
    scvmmclusters/*.yaml                    name -> infrastructure cluster
    providers/*.yaml                        name -> provider settings
    secrets/*.yaml                          name -> secret
"""

import asyncio
import hashlib
import io
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from scvmm.models.cluster import Cluster, Machine, ScvmmCluster, Secret
from scvmm.models.machine import ScvmmMachine
from scvmm.models.provider import ScvmmProvider


logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class StoreError(Exception):
    """A record could not be read or written."""
    pass


class MachineStore(ABC):
    """Access to machine records and the records they depend on."""

    @abstractmethod
    async def get_machine(self, namespace: str, name: str) -> Optional[ScvmmMachine]:
        """Fetch a machine record, None when it does not exist."""

    @abstractmethod
    async def list_machines(self) -> List[ScvmmMachine]:
        """List every machine record."""

    @abstractmethod
    async def get_owner_machine(self, machine: ScvmmMachine) -> Optional[Machine]:
        """Fetch the cluster machine named by the record's owner reference."""

    @abstractmethod
    async def get_cluster(self, namespace: str, name: str) -> Optional[Cluster]:
        """Fetch a cluster."""

    @abstractmethod
    async def get_scvmm_cluster(self, namespace: str, name: str) -> Optional[ScvmmCluster]:
        """Fetch an infrastructure cluster."""

    @abstractmethod
    async def get_provider(self, namespace: str, name: str) -> Optional[ScvmmProvider]:
        """Fetch provider settings."""

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> Optional[Secret]:
        """Fetch a secret."""

    @abstractmethod
    async def patch_machine(self, machine: ScvmmMachine) -> None:
        """Persist a machine record.

        A record marked for deletion that carries no finalizer is removed.
        """

    @abstractmethod
    async def request_deletion(self, namespace: str, name: str) -> Optional[ScvmmMachine]:
        """Mark a machine record for deletion."""


class FileStore(MachineStore):
    """Machine store backed by a directory of YAML files."""

    MACHINES_DIR = "scvmmmachines"

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir).resolve()
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self._written: Dict[str, Optional[str]] = {}

    @property
    def machines_dir(self) -> Path:
        return self.store_dir / self.MACHINES_DIR

    def machine_key(self, file_path: Path) -> Optional[Tuple[str, str]]:
        """Map a machine record path to its (namespace, name) key."""
        file_path = Path(file_path).resolve()
        if file_path.suffix != ".yaml" or file_path.name.startswith("."):
            return None
        if file_path.parent.parent != self.machines_dir:
            return None
        return file_path.parent.name, file_path.stem

    @staticmethod
    def _digest(content: Optional[str]) -> Optional[str]:
        if content is None:
            return None
        return hashlib.md5(content.encode()).hexdigest()

    def is_own_write(self, file_path: Path) -> bool:
        """Whether a machine file still holds exactly what this store last wrote."""
        key = str(Path(file_path).resolve())
        if key not in self._written:
            return False
        try:
            content: Optional[str] = Path(file_path).read_text()
        except FileNotFoundError:
            content = None
        except OSError:
            return False
        return self._digest(content) == self._written[key]

    def _machine_path(self, namespace: str, name: str) -> Path:
        return self.machines_dir / namespace / f"{name}.yaml"

    def _read_yaml(self, file_path: Path) -> Any:
        try:
            return self.yaml.load(file_path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, YAMLError) as e:
            raise StoreError(f"Error reading {file_path}: {e}") from e

    def _load_machine(self, file_path: Path) -> Optional[ScvmmMachine]:
        data = self._read_yaml(file_path)
        if data is None:
            return None
        metadata = dict(data.get("metadata") or {})
        metadata.setdefault("name", file_path.stem)
        metadata.setdefault("namespace", file_path.parent.name)
        try:
            return ScvmmMachine.model_validate({**data, "metadata": metadata})
        except ValidationError as e:
            raise StoreError(f"Invalid machine record {file_path}: {e}") from e

    def _load_kind(self, kind_dir: str, model: Type[RecordT]) -> Dict[Tuple[str, str], RecordT]:
        """Load every ``name: body`` entry of a kind directory."""
        records: Dict[Tuple[str, str], RecordT] = {}
        directory = self.store_dir / kind_dir
        if not directory.is_dir():
            return records
        for yaml_file in sorted(directory.glob("*.yaml")):
            data = self._read_yaml(yaml_file) or {}
            for name, body in data.items():
                body = dict(body or {})
                metadata = dict(body.get("metadata") or {})
                metadata.setdefault("name", name)
                metadata.setdefault("namespace", "default")
                try:
                    record = model.model_validate({**body, "metadata": metadata})
                except ValidationError as e:
                    raise StoreError(f"Invalid {kind_dir} entry {name} in {yaml_file}: {e}") from e
                records[(record.metadata.namespace, record.metadata.name)] = record
        return records

    async def _get(self, kind_dir: str, model: Type[RecordT], namespace: str, name: str) -> Optional[RecordT]:
        records = await asyncio.to_thread(self._load_kind, kind_dir, model)
        return records.get((namespace, name))

    async def get_machine(self, namespace: str, name: str) -> Optional[ScvmmMachine]:
        return await asyncio.to_thread(self._load_machine, self._machine_path(namespace, name))

    def _list_machines(self) -> List[ScvmmMachine]:
        machines = []
        for yaml_file in sorted(self.machines_dir.glob("*/*.yaml")):
            machine = self._load_machine(yaml_file)
            if machine is not None:
                machines.append(machine)
        return machines

    async def list_machines(self) -> List[ScvmmMachine]:
        return await asyncio.to_thread(self._list_machines)

    async def get_owner_machine(self, machine: ScvmmMachine) -> Optional[Machine]:
        ref = machine.metadata.owner("Machine")
        if ref is None:
            return None
        return await self._get("machines", Machine, ref.namespace or machine.metadata.namespace, ref.name)

    async def get_cluster(self, namespace: str, name: str) -> Optional[Cluster]:
        return await self._get("clusters", Cluster, namespace, name)

    async def get_scvmm_cluster(self, namespace: str, name: str) -> Optional[ScvmmCluster]:
        return await self._get("scvmmclusters", ScvmmCluster, namespace, name)

    async def get_provider(self, namespace: str, name: str) -> Optional[ScvmmProvider]:
        return await self._get("providers", ScvmmProvider, namespace, name)

    async def get_secret(self, namespace: str, name: str) -> Optional[Secret]:
        return await self._get("secrets", Secret, namespace, name)

    def _write_machine(self, machine: ScvmmMachine):
        path = self._machine_path(machine.metadata.namespace, machine.metadata.name)
        if machine.deleting and not machine.metadata.finalizers:
            path.unlink(missing_ok=True)
            self._written[str(path)] = None
            logger.info(f"Removed machine record {machine.key}")
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        stream = io.StringIO()
        self.yaml.dump(machine.to_document(), stream)
        content = stream.getvalue()
        try:
            if path.read_text() == content:
                return
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreError(f"Error reading {path}: {e}") from e
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_name, path)
            self._written[str(path)] = self._digest(content)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"Error writing {path}: {e}") from e

    async def patch_machine(self, machine: ScvmmMachine) -> None:
        await asyncio.to_thread(self._write_machine, machine)

    async def request_deletion(self, namespace: str, name: str) -> Optional[ScvmmMachine]:
        machine = await self.get_machine(namespace, name)
        if machine is None:
            return None
        if machine.metadata.deletion_timestamp is None:
            machine.metadata.deletion_timestamp = datetime.now(timezone.utc).replace(microsecond=0)
        await self.patch_machine(machine)
        return machine
