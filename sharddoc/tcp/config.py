"""Node configuration and cluster status records."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any

import yaml

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@dataclass
class Node:
    """A cluster member: its id and raft address."""

    id: str = ""
    address: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "address": self.address}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Node:
        return cls(id=str(raw.get("id", "")), address=str(raw.get("address", "")))


@dataclass
class StoreStatus:
    """View of the cluster from one node."""

    me: Node = field(default_factory=Node)
    leader: Node = field(default_factory=Node)
    followers: list[Node] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "me": self.me.to_dict(),
            "leader": self.leader.to_dict(),
            "followers": [node.to_dict() for node in self.followers],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StoreStatus:
        return cls(
            me=Node.from_dict(raw.get("me") or {}),
            leader=Node.from_dict(raw.get("leader") or {}),
            followers=[Node.from_dict(item) for item in raw.get("followers") or []],
        )


@dataclass
class NodeConfig:
    """Settings of one node; durations are in seconds."""

    node_id: str = ""
    raft_addr: str = ""
    http_addr: str = ""
    raft_dir: str = ""
    db_path: str = ""
    bootstrap: bool = False
    join_addr: str = ""
    raft_timeout: float = 0.0
    snapshot_interval: float = 0.0
    snapshot_threshold: int = 0


def parse_duration(text: str | int) -> float:
    """Parse a duration such as ``"1m30s"`` into seconds.

    A bare integer counts nanoseconds.
    """
    if isinstance(text, bool):
        raise ValueError(f"invalid duration: {text!r}")
    if isinstance(text, int):
        return text / 1e9
    if not isinstance(text, str):
        raise ValueError(f"invalid duration: {text!r}")
    body = text.strip()
    sign = 1.0
    if body[:1] in ("+", "-"):
        sign = -1.0 if body[0] == "-" else 1.0
        body = body[1:]
    if body == "0":
        return 0.0
    if not body:
        raise ValueError(f"invalid duration: {text!r}")
    total = 0.0
    pos = 0
    while pos < len(body):
        match = _PART.match(body, pos)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def _resolve_path(base_dir: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


def _text(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return "" if value is None else str(value)


def load_node_config(path: str | os.PathLike[str]) -> NodeConfig:
    """Read a node's YAML configuration.

    Relative directories are resolved against the file's own directory.
    """
    abs_path = os.path.abspath(path)
    base_dir = os.path.dirname(abs_path)
    with open(abs_path, encoding="utf-8") as handle:
        text = handle.read()
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse YAML config: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("failed to parse YAML config: expected a mapping")

    threshold = raw.get("snapshot_threshold") or 0
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ValueError(f"failed to parse YAML config: invalid snapshot_threshold {threshold!r}")

    def duration(key: str) -> float:
        value = raw.get(key)
        if value is None:
            return 0.0
        try:
            return parse_duration(value)
        except ValueError as exc:
            raise ValueError(f"failed to parse YAML config: {key}: {exc}") from exc

    return NodeConfig(
        node_id=_text(raw, "node_id"),
        raft_addr=_text(raw, "raft_addr"),
        http_addr=_text(raw, "http_addr"),
        raft_dir=_resolve_path(base_dir, _text(raw, "raft_dir")),
        db_path=_resolve_path(base_dir, _text(raw, "db_path")),
        bootstrap=bool(raw.get("bootstrap", False)),
        join_addr=_text(raw, "join_addr"),
        raft_timeout=duration("raft_timeout"),
        snapshot_interval=duration("snapshot_interval"),
        snapshot_threshold=threshold,
    )