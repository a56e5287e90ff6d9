"""State/store layer.

:class:`StateStore` holds the local, versioned copy of the synchronized
state.  The sync orchestrator reads dirty entries from it and writes
resolved values back through :meth:`StateStore.set_state`.
"""

from pystatesync.state.events import StateEntry, StateSnapshot, StateUpdate, UpdateSource
from pystatesync.state.store import StateStore

__all__ = ["StateEntry", "StateSnapshot", "StateStore", "StateUpdate", "UpdateSource"]
