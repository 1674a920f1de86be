"""Feature flags owned by the application object.

Flags come from ``FEATURE_<NAME>`` environment variables layered over the
defaults below. ``reload`` re-reads them and tells subscribers which flags
changed.
"""
from __future__ import annotations

import logging
import os
from typing import Callable, Dict, List, Mapping, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_FLAGS: Dict[str, bool] = {
    "rsvp": True,
    "camiseta_voting": True,
    "merchandise": True,
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

Listener = Callable[[Set[str]], None]


def _parse_flag(raw: str) -> Optional[bool]:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return None


class FeatureFlags:
    def __init__(
        self,
        defaults: Optional[Mapping[str, bool]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._defaults = dict(DEFAULT_FLAGS if defaults is None else defaults)
        self._listeners: List[Listener] = []
        self._flags = self._load(os.environ if environ is None else environ)

    def is_enabled(self, name: str) -> bool:
        return self._flags.get(name, False)

    def snapshot(self) -> Dict[str, bool]:
        return dict(self._flags)

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reload(self, environ: Optional[Mapping[str, str]] = None) -> Set[str]:
        updated = self._load(os.environ if environ is None else environ)
        changed = {name for name in set(updated) | set(self._flags) if updated.get(name) != self._flags.get(name)}
        self._flags = updated
        if changed:
            logger.info("Feature flags changed: %s", ", ".join(sorted(changed)))
            for listener in list(self._listeners):
                listener(changed)
        return changed

    def _load(self, environ: Mapping[str, str]) -> Dict[str, bool]:
        flags = dict(self._defaults)
        for key, raw in environ.items():
            if not key.startswith("FEATURE_"):
                continue
            name = key[len("FEATURE_"):].lower()
            parsed = _parse_flag(raw)
            if parsed is None:
                logger.warning("Ignoring feature flag %s with unrecognised value %r", key, raw)
                continue
            flags[name] = parsed
        return flags
