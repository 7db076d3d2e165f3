# src/qfund/runtime/node_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from qfund.runtime.address import is_valid_address

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None:
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class GenesisAccount:
    address: str
    pubkey: str = ""
    balances: Tuple[Tuple[str, int], ...] = ()


@dataclass(frozen=True)
class NodeConfig:
    chain_id: str
    node_id: str
    mode: str  # "dev" | "testnet" | "prod"

    db_path: str
    contract_address: str
    clock_mode: str  # "manual" | "auto"

    allow_unsigned_msgs: bool
    elide_zero_transfers: bool

    api_host: str
    api_port: int

    log_level: str

    accounts: Tuple[GenesisAccount, ...] = field(default_factory=tuple)


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_CLOCKS = {"manual", "auto"}


def validate_node_config(cfg: NodeConfig) -> None:
    """Fail-fast validation for operator config."""
    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    if not isinstance(cfg.node_id, str) or not cfg.node_id.strip():
        raise ValueError("node_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if cfg.clock_mode not in _ALLOWED_CLOCKS:
        raise ValueError(f"clock_mode must be one of {_ALLOWED_CLOCKS}; got: {cfg.clock_mode!r}")

    if mode == "prod" and cfg.allow_unsigned_msgs:
        raise ValueError("allow_unsigned_msgs is not permitted in prod mode")

    if mode == "prod" and cfg.clock_mode == "manual":
        raise ValueError("manual clock is not permitted in prod mode")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if not is_valid_address(cfg.contract_address):
        raise ValueError(f"contract_address is not a valid address: {cfg.contract_address!r}")

    seen: set[str] = set()
    for a in cfg.accounts:
        if not is_valid_address(a.address):
            raise ValueError(f"genesis account address is invalid: {a.address!r}")
        if a.address in seen:
            raise ValueError(f"duplicate genesis account: {a.address!r}")
        seen.add(a.address)
        for denom, amount in a.balances:
            if not denom or int(amount) < 0:
                raise ValueError(f"invalid genesis balance for {a.address!r}: {denom}={amount}")


def default_node_config() -> NodeConfig:
    # Production-safe: signatures required, wall clock.
    return NodeConfig(
        chain_id="qfund-dev",
        node_id="local-node",
        mode="prod",
        db_path="./data/qfund.db",
        contract_address="qfund-contract",
        clock_mode="auto",
        allow_unsigned_msgs=False,
        elide_zero_transfers=False,
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def _parse_accounts(raw: Any) -> Tuple[GenesisAccount, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError("accounts must be a list")
    out: List[GenesisAccount] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("each genesis account must be an object")
        bals = item.get("balances") or {}
        if not isinstance(bals, dict):
            raise ValueError("genesis balances must be a {denom: amount} object")
        out.append(
            GenesisAccount(
                address=str(item.get("address") or ""),
                pubkey=str(item.get("pubkey") or ""),
                balances=tuple(sorted((str(d), int(a)) for d, a in bals.items())),
            )
        )
    return tuple(out)


def node_config_from_dict(raw: Json) -> NodeConfig:
    d = default_node_config()
    cfg = NodeConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        node_id=_as_str(raw.get("node_id"), d.node_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        contract_address=_as_str(raw.get("contract_address"), d.contract_address),
        clock_mode=_as_str(raw.get("clock_mode"), d.clock_mode).strip().lower(),
        allow_unsigned_msgs=_as_bool(raw.get("allow_unsigned_msgs"), d.allow_unsigned_msgs),
        elide_zero_transfers=_as_bool(raw.get("elide_zero_transfers"), d.elide_zero_transfers),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
        accounts=_parse_accounts(raw.get("accounts")),
    )
    validate_node_config(cfg)
    return cfg


def read_node_config_file(path: str) -> NodeConfig:
    """Read a JSON or YAML config file (by extension; .yaml/.yml use PyYAML)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("node config must be a mapping")
    return node_config_from_dict(raw)


def load_node_config(*, config_path: Optional[str] = None) -> NodeConfig:
    p = config_path or os.environ.get("QFUND_CONFIG_PATH")
    if p:
        return read_node_config_file(p)

    cfg = default_node_config()
    validate_node_config(cfg)
    return cfg


def apply_node_config_to_env(cfg: NodeConfig) -> None:
    validate_node_config(cfg)
    os.environ["QFUND_CHAIN_ID"] = cfg.chain_id
    os.environ["QFUND_NODE_ID"] = cfg.node_id
    os.environ["QFUND_MODE"] = cfg.mode
    os.environ["QFUND_DB_PATH"] = cfg.db_path
    os.environ["QFUND_LOG_LEVEL"] = cfg.log_level


__all__ = [
    "GenesisAccount",
    "NodeConfig",
    "validate_node_config",
    "default_node_config",
    "node_config_from_dict",
    "read_node_config_file",
    "load_node_config",
    "apply_node_config_to_env",
]
