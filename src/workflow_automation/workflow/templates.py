"""``{{ path }}`` interpolation for action configuration."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from .conditions import SupportsLookup
from .context import ABSENT

_TOKEN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def stringify(value: object) -> str:
    if value is ABSENT or value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, default=str, separators=(",", ":"), ensure_ascii=False)
    return str(value)


class TemplateResolver:
    """Replace ``{{ path }}`` tokens with values looked up in the context.

    Unresolvable paths render as the empty string; resolution never raises.
    """

    def resolve(self, value: str, context: SupportsLookup) -> str:
        return _TOKEN.sub(lambda m: stringify(context.lookup(m.group(1))), value)

    def resolve_config(self, config: Any, context: SupportsLookup) -> Any:
        """Resolve every string leaf of a config tree; other values pass through unchanged."""

        if isinstance(config, str):
            return self.resolve(config, context)
        if isinstance(config, Mapping):
            return {key: self.resolve_config(item, context) for key, item in config.items()}
        if isinstance(config, list):
            return [self.resolve_config(item, context) for item in config]
        if isinstance(config, tuple):
            return tuple(self.resolve_config(item, context) for item in config)
        return config
