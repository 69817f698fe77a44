"""
Settings and trade log stores.

Persists bot settings, per-(user, market) trading state and the trade log to
JSON files for crash recovery. Each store serializes access with a lock so a
read-modify-write of one record is atomic.
"""
import json
import logging
import os
import threading
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..shared.types import BotSettings, MarketState, StateDelta, TradeLogEntry
from ..shared.defaults import TRADE_LOG_PAGE_SIZE


logger = logging.getLogger(__name__)

SETTINGS_FIELDS = {f.name for f in fields(BotSettings)} - {"user_id"}


class SettingsStore(Protocol):
    """Per-user settings and per-(user, market) trading state."""

    def get_active_states(self) -> List[BotSettings]:
        ...

    def get_state(self, user_id: str) -> Optional[BotSettings]:
        ...

    def update_state(self, user_id: str, partial: Dict[str, Any]) -> BotSettings:
        ...

    def get_market_state(self, user_id: str, market: str) -> MarketState:
        ...

    def update_market_state(self, user_id: str, market: str, delta: StateDelta) -> MarketState:
        ...

    def reset_market_states(self, user_id: str) -> None:
        ...


class TradeLogStore(Protocol):
    """Append-only trade log."""

    def append(self, entry: TradeLogEntry) -> TradeLogEntry:
        ...

    def list(self, user_id: str, limit: int = TRADE_LOG_PAGE_SIZE) -> List[TradeLogEntry]:
        ...

    def all(self, user_id: Optional[str] = None) -> List[TradeLogEntry]:
        ...


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _write_json(path: Path, data: Any) -> None:
    """Write JSON via a temp file and rename so a crash never leaves a truncated file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, 'w') as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        logger.info(f"State file {path} does not exist, starting fresh")
        return default
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load state from {path}: {e}")
        return default


def settings_from_dict(user_id: str, data: Dict[str, Any]) -> BotSettings:
    """Build BotSettings from a stored record, ignoring unknown keys."""
    values = {k: v for k, v in data.items() if k in SETTINGS_FIELDS}
    if "portfolio_markets" in values:
        values["portfolio_markets"] = tuple(values["portfolio_markets"] or ())
    if "portfolio_allocations" in values:
        values["portfolio_allocations"] = tuple(float(a) for a in values["portfolio_allocations"] or ())
    return BotSettings(user_id=user_id, **values)


def settings_to_dict(settings: BotSettings) -> Dict[str, Any]:
    data = asdict(settings)
    data.pop("user_id")
    data["portfolio_markets"] = list(settings.portfolio_markets)
    data["portfolio_allocations"] = list(settings.portfolio_allocations)
    return data


class JsonSettingsStore:
    """
    Settings store backed by one JSON file.

    Layout:
        {"users": {user_id: {...settings...}},
         "markets": {user_id: {market: {"reference_price": ..., "last_trade_time": ...}}}}
    """

    def __init__(self, state_file: Path):
        """
        Initialize settings store.

        Args:
            state_file: Path to JSON file for state persistence
        """
        self.state_file = Path(state_file)
        self._lock = threading.RLock()
        data = _read_json(self.state_file, {})
        self._users: Dict[str, Dict[str, Any]] = data.get("users", {})
        self._markets: Dict[str, Dict[str, Dict[str, Any]]] = data.get("markets", {})
        logger.info(f"Loaded settings for {len(self._users)} user(s) from {self.state_file}")

    def _save_state(self):
        _write_json(self.state_file, {"users": self._users, "markets": self._markets})
        logger.debug(f"Saved state to {self.state_file}")

    def get_active_states(self) -> List[BotSettings]:
        """All settings with is_active set, in insertion order."""
        with self._lock:
            return [
                settings_from_dict(user_id, data)
                for user_id, data in self._users.items()
                if data.get("is_active")
            ]

    def get_state(self, user_id: str) -> Optional[BotSettings]:
        with self._lock:
            data = self._users.get(user_id)
            return settings_from_dict(user_id, data) if data is not None else None

    def update_state(self, user_id: str, partial: Dict[str, Any]) -> BotSettings:
        """
        Upsert settings for a user.

        Args:
            user_id: User ID (required)
            partial: Fields to overwrite; a default record is created first if none exists

        Returns:
            Updated BotSettings
        """
        if not user_id:
            raise ValueError("User ID is required to update bot settings")
        unknown = set(partial) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            current = self.get_state(user_id) or BotSettings(user_id=user_id)
            updated = settings_from_dict(user_id, {**settings_to_dict(current), **partial})
            self._users[user_id] = settings_to_dict(updated)
            self._save_state()
            return updated

    def get_market_state(self, user_id: str, market: str) -> MarketState:
        with self._lock:
            record = self._markets.get(user_id, {}).get(market, {})
            return MarketState(
                reference_price=record.get("reference_price"),
                last_trade_time=_parse_time(record.get("last_trade_time")),
            )

    def update_market_state(self, user_id: str, market: str, delta: StateDelta) -> MarketState:
        """Apply a delta to the (user, market) state atomically and persist it."""
        with self._lock:
            current = self.get_market_state(user_id, market)
            if delta.is_empty:
                return current
            updated = replace(
                current,
                reference_price=delta.reference_price if delta.reference_price is not None else current.reference_price,
                last_trade_time=delta.last_trade_time if delta.last_trade_time is not None else current.last_trade_time,
            )
            self._markets.setdefault(user_id, {})[market] = {
                "reference_price": updated.reference_price,
                "last_trade_time": _format_time(updated.last_trade_time),
            }
            self._save_state()
            logger.debug(f"Updated state for {user_id}/{market}: {updated}")
            return updated

    def reset_market_states(self, user_id: str) -> None:
        """Forget reference prices and trade times so every market re-initializes."""
        with self._lock:
            if self._markets.pop(user_id, None) is not None:
                self._save_state()
                logger.info(f"Reset trading state for {user_id}")


class JsonTradeLogStore:
    """Append-only trade log backed by one JSON file."""

    def __init__(self, log_file: Path):
        """
        Initialize trade log.

        Args:
            log_file: Path to JSON file holding all entries
        """
        self.log_file = Path(log_file)
        self._lock = threading.Lock()
        self._entries: List[TradeLogEntry] = [
            self._from_dict(row) for row in _read_json(self.log_file, [])
        ]

    @staticmethod
    def _from_dict(row: Dict[str, Any]) -> TradeLogEntry:
        return TradeLogEntry(**{**row, "timestamp": _parse_time(row.get("timestamp"))})

    @staticmethod
    def _to_dict(entry: TradeLogEntry) -> Dict[str, Any]:
        row = asdict(entry)
        row["timestamp"] = _format_time(entry.timestamp)
        return row

    def append(self, entry: TradeLogEntry) -> TradeLogEntry:
        """Store an entry, assigning its id and (if missing) timestamp."""
        with self._lock:
            next_id = max((e.id or 0 for e in self._entries), default=0) + 1
            stored = replace(
                entry,
                id=next_id,
                timestamp=entry.timestamp or datetime.now(timezone.utc),
            )
            self._entries.append(stored)
            _write_json(self.log_file, [self._to_dict(e) for e in self._entries])
            return stored

    def list(self, user_id: str, limit: int = TRADE_LOG_PAGE_SIZE) -> List[TradeLogEntry]:
        """Most recent entries of a user first."""
        with self._lock:
            own = [e for e in self._entries if e.user_id == user_id]
        return list(reversed(own))[:limit]

    def all(self, user_id: Optional[str] = None) -> List[TradeLogEntry]:
        """Entries in chronological (insertion) order, optionally for one user."""
        with self._lock:
            return [e for e in self._entries if user_id is None or e.user_id == user_id]
