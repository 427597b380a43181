"""Cloud-init NoCloud media for machines that boot with bootstrap data."""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict

import pycdlib
import smbclient
from pycdlib.pycdlibexception import PyCdlibException
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
from smbprotocol.exceptions import SMBException

from scvmm.models.provider import ProviderSpec


logger = logging.getLogger(__name__)

VOLUME_ID = "cidata"

# ISO9660 name, Rock Ridge / Joliet name
SEED_FILES = (
    ("USERDATA.;1", "user-data"),
    ("METADATA.;1", "meta-data"),
    ("NETCFG.;1", "network-config"),
)


class CloudInitError(Exception):
    """Cloud-init media could not be built or uploaded."""
    pass


@dataclass
class CloudInitData:
    """Payloads written to the seed image; all may be empty."""
    user_data: bytes = b""
    meta_data: bytes = b""
    network_config: bytes = b""

    @property
    def empty(self) -> bool:
        return not (self.user_data or self.meta_data or self.network_config)


def iso_path(library: str, vm_name: str) -> str:
    """Location of a machine's seed image on the library share."""
    return library.rstrip("\\") + "\\" + vm_name + "-cloud-init.iso"


class CloudInitMedia:
    """Builds seed images and uploads them to the library share."""

    def __init__(self):
        self.yaml = YAML()
        self.yaml.preserve_quotes = True

    def prepare_meta_data(self, vm_name: str, vm_id: str, meta_data: bytes) -> bytes:
        """Fill instance-id and local-hostname into the meta-data document."""
        document: Dict[str, Any] = {}
        if meta_data:
            try:
                loaded = self.yaml.load(meta_data.decode())
            except (UnicodeDecodeError, YAMLError) as e:
                raise CloudInitError(f"Invalid meta-data for {vm_name}: {e}") from e
            if loaded is not None and not isinstance(loaded, dict):
                raise CloudInitError(f"Invalid meta-data for {vm_name}: expected a mapping")
            document = loaded or {}

        if "instance-id" not in document:
            document["instance-id"] = vm_id or f"iid-{vm_name}"
        if "local-hostname" not in document:
            document["local-hostname"] = vm_name

        stream = io.StringIO()
        self.yaml.dump(document, stream)
        return stream.getvalue().encode()

    def build_iso(self, vm_name: str, vm_id: str, data: CloudInitData) -> bytes:
        """Render the NoCloud seed image in memory."""
        contents = {
            "user-data": data.user_data,
            "meta-data": self.prepare_meta_data(vm_name, vm_id, data.meta_data),
            "network-config": data.network_config,
        }
        iso = pycdlib.PyCdlib()
        try:
            iso.new(interchange_level=3, joliet=3, rock_ridge="1.09", vol_ident=VOLUME_ID)
            for iso_name, name in SEED_FILES:
                content = contents[name]
                if name == "network-config" and not content:
                    continue
                iso.add_fp(io.BytesIO(content), len(content), "/" + iso_name,
                           rr_name=name, joliet_path="/" + name)
            out = io.BytesIO()
            iso.write_fp(out)
        except PyCdlibException as e:
            raise CloudInitError(f"Failed to build cloud-init image for {vm_name}: {e}") from e
        finally:
            iso.close()
        return out.getvalue()

    def _upload(self, provider: ProviderSpec, path: str, image: bytes):
        server = path.lstrip("\\").split("\\", 1)[0]
        if not path.startswith("\\\\") or not server:
            raise CloudInitError(f"Invalid library path {path}")
        smbclient.register_session(
            server,
            username=provider.scvmm_username or None,
            password=provider.scvmm_password or None,
        )
        with smbclient.open_file(path, mode="wb") as f:
            f.write(image)

    async def publish(self, provider: ProviderSpec, vm_name: str, vm_id: str,
                      data: CloudInitData) -> str:
        """Build the seed image and write it to the library; returns its path."""
        path = iso_path(provider.scvmm_library_isos, vm_name)
        image = self.build_iso(vm_name, vm_id, data)
        logger.info(f"Writing cloud-init image for {vm_name} to {path} ({len(image)} bytes)")
        try:
            await asyncio.to_thread(self._upload, provider, path, image)
        except (SMBException, OSError, ValueError) as e:
            raise CloudInitError(f"Failed to write {path}: {e}") from e
        return path
