# src/qfund/runtime/host_boot.py

from __future__ import annotations

import logging
from typing import Any, Optional

from qfund.contract.types import Coin
from qfund.runtime.host import ContractHost
from qfund.runtime.node_config import NodeConfig, load_node_config
from qfund.runtime.sqlite_db import SqliteDB, SqliteKVStore
from qfund.structured_logging import log_event

log = logging.getLogger("qfund.boot")

GENESIS_KEY = "host/genesis"


def apply_genesis(host: ContractHost, store: Any, cfg: NodeConfig) -> bool:
    """Register genesis accounts and mint their balances, once per database."""
    if store.get(GENESIS_KEY) is not None:
        return False
    for a in cfg.accounts:
        if a.pubkey:
            host.register_account(a.address, a.pubkey)
        coins = [Coin(denom=d, amount=int(n)) for d, n in a.balances if int(n) > 0]
        if coins:
            host.mint(a.address, coins)
    store.set(GENESIS_KEY, {"chain_id": cfg.chain_id, "accounts": len(cfg.accounts)})
    log_event(log, "genesis_applied", chain_id=cfg.chain_id, accounts=len(cfg.accounts))
    return True


def build_host(cfg: Optional[NodeConfig] = None) -> ContractHost:
    """
    Build a SQLite-backed ContractHost from an explicit config or, if
    omitted, from QFUND_CONFIG_PATH / defaults.
    """
    c = cfg or load_node_config()
    store = SqliteKVStore(db=SqliteDB(path=c.db_path))
    host = ContractHost(
        store=store,
        chain_id=c.chain_id,
        contract_address=c.contract_address,
        clock_mode=c.clock_mode,
        require_signatures=not c.allow_unsigned_msgs,
        elide_zero_transfers=c.elide_zero_transfers,
    )
    apply_genesis(host, store, c)
    log_event(
        log,
        "host_booted",
        chain_id=c.chain_id,
        node_id=c.node_id,
        mode=c.mode,
        clock_mode=c.clock_mode,
        height=host.block.height,
    )
    return host
