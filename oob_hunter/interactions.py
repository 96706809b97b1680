from __future__ import annotations
import json, re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List
from .errors import DecodeError

# interactsh sends RFC3339 with up to 9 fractional digits; datetime takes 6
FRACTION_RE = re.compile(r"\.(\d+)")


def _text(data: Dict[str, Any], key: str) -> str:
    return str(data.get(key) or "")


@dataclass
class Interaction:
    protocol: str
    unique_id: str = ""
    full_id: str = ""
    q_type: str = ""
    raw_request: str = ""
    raw_response: str = ""
    remote_address: str = ""
    timestamp: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_wire(cls, data: Any) -> "Interaction":
        if not isinstance(data, dict):
            raise DecodeError(f"interaction must be a JSON object, got {type(data).__name__}")
        if not data.get("protocol"):
            raise DecodeError("interaction has no protocol")
        return cls(
            protocol=str(data["protocol"]),
            unique_id=_text(data, "unique-id"),
            full_id=_text(data, "full-id"),
            q_type=_text(data, "q-type"),
            raw_request=_text(data, "raw-request"),
            raw_response=_text(data, "raw-response"),
            remote_address=_text(data, "remote-address"),
            timestamp=_text(data, "timestamp"),
            raw=data,
        )

    def iso_timestamp(self) -> str:
        """Normalise the server timestamp to ISO-8601 UTC; unparsable values pass through."""
        if not self.timestamp:
            return ""
        try:
            ts = datetime.fromisoformat(_normalise_fraction(self.timestamp.replace("Z", "+00:00")))
        except ValueError:
            return self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _normalise_fraction(value: str) -> str:
    return FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)


InteractionHandler = Callable[[Interaction], None]


def noop_handler(interaction: Interaction) -> None:
    return None


def decode_interaction(plaintext: bytes) -> Interaction:
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"interaction is not valid JSON: {e}") from e
    return Interaction.from_wire(data)


class InteractionLog:
    """Arrival-ordered interaction list backing the results table."""

    def __init__(self):
        self.items: List[Interaction] = []

    def __len__(self) -> int:
        return len(self.items)

    def __call__(self, interaction: Interaction) -> None:
        self.items.append(interaction)

    def rows(self) -> List[Dict[str, Any]]:
        return [
            {
                "req": i,
                "dateTime": it.iso_timestamp(),
                "type": it.protocol.upper(),
                "payload": it.full_id,
                "source": it.remote_address,
            }
            for i, it in enumerate(self.items, start=1)
        ]

    def clear(self) -> None:
        self.items.clear()
