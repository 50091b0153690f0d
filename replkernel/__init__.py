from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("replkernel")
except PackageNotFoundError:  # pragma: no cover - local editable without metadata
    __version__ = "0.0.0+local"

from .connection import ChannelRole, Connection, ConnectionConfig
from .kernel import KernelServer, run_kernel

__all__ = ["ChannelRole", "Connection", "ConnectionConfig", "KernelServer", "run_kernel", "__version__"]
