"""External collaborators: the node command surface, the EVM RPC and the
confirmation waiter built on top of them.
"""

from .node import CliTransport, NodeClient, RpcTransport
from .waiter import ConfirmationWaiter

__all__ = ["CliTransport", "ConfirmationWaiter", "NodeClient", "RpcTransport"]
