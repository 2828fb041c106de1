"""
Method handlers of the miniui object.

Modules:
- status: system fact snapshot
- network: LAN apply and network reload (synchronous programs)
- upgrade: firmware upgrade (detached program)
"""

from __future__ import annotations

from miniui_ops.handlers.network import (
    handle_apply_lan,
    handle_reload_network,
    register_network_handlers,
    run_checked,
)
from miniui_ops.handlers.status import handle_status, register_status_handlers
from miniui_ops.handlers.upgrade import (
    handle_sysupgrade,
    keep_flag,
    register_upgrade_handlers,
)

__all__ = [
    # Status
    "handle_status",
    "register_status_handlers",
    # Network
    "handle_apply_lan",
    "handle_reload_network",
    "register_network_handlers",
    "run_checked",
    # Upgrade
    "handle_sysupgrade",
    "keep_flag",
    "register_upgrade_handlers",
]
