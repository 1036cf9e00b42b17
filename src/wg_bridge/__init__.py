"""wg-bridge - WireGuard configuration control plane.

Validates and atomically applies interface configurations, and exchanges
them between nodes as signed, encrypted bundles.
"""

from .control import ControlPlane
from .errors import BridgeError
from .settings import BridgeSettings

__version__ = "0.1.0"

__all__ = ["ControlPlane", "BridgeError", "BridgeSettings", "__version__"]
