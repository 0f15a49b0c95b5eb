"""idebridge - editor companion bridge for command-line agents.

Lets an agent running in a terminal talk JSON-RPC to a long-running editor
over a loopback HTTP/SSE channel.
"""

__version__ = "0.1.0"

from idebridge.config import BridgeConfig
from idebridge.ide import BridgeServer, CompanionHandler

__all__ = [
    "__version__",
    "BridgeConfig",
    "BridgeServer",
    "CompanionHandler",
]
