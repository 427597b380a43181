"""
SCVMM machine controller.

Reconciles declarative machine records against System Center Virtual Machine
Manager through a remote PowerShell session.
"""

__version__ = "0.3.0"

# Re-export key components for easier access
from scvmm.models.config import ControllerConfig
from scvmm.models.machine import MachineSpec, ScvmmMachine
from scvmm.models.provider import ProviderSpec

__all__ = [
    "ControllerConfig",
    "MachineSpec",
    "ProviderSpec",
    "ScvmmMachine",
]
