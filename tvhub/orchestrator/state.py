from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

@dataclass
class DeviceSnapshot:
    """Last-known TV state. None means never observed."""
    powered_on: bool = False
    ambilight_style: Optional[Dict[str, Any]] = None
    ambilight_power: Optional[bool] = None  # only set when the style call returned nothing
    muted: Optional[bool] = None
    volume_level: Optional[int] = None
    active_input: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
