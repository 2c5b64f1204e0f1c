from __future__ import annotations
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .errors import PolicyNotFoundError
from .policy_config import DEFAULT_TEMPLATE, PolicyConfig, load_policy

logger = logging.getLogger("policy_provider")

POLICY_CACHE_TTL_SECONDS = float(os.getenv("POLICY_CACHE_TTL_SECONDS", "10"))
POLICY_TEMPLATES_PATH = os.getenv("POLICY_TEMPLATES_PATH", "").strip()

DEFAULT_TEMPLATE_ID = "default"


class TTLCache:
    """Small expiring cache for validated policies. Clock is injectable for tests."""

    def __init__(self, ttl_seconds: float = POLICY_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[str, Tuple[PolicyConfig, float]] = {}

    def get(self, key: str) -> Optional[PolicyConfig]:
        hit = self._data.get(key)
        if hit is None:
            return None
        cfg, expires_at = hit
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return cfg

    def set(self, key: str, cfg: PolicyConfig) -> None:
        self._data[key] = (cfg, self._clock() + self.ttl_seconds)

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._data.clear()
        else:
            self._data.pop(key, None)


class PolicyProvider:
    """
    Template registry keyed by template id.

    Raw templates are validated on every cache miss, so an invalid template
    fails with PolicyConfigError before any decision is computed for a deal.
    """

    def __init__(self, templates: Optional[Mapping[str, Mapping[str, Any]]] = None, cache: Optional[TTLCache] = None):
        self._templates: Dict[str, Mapping[str, Any]] = {DEFAULT_TEMPLATE_ID: DEFAULT_TEMPLATE}
        if templates:
            self._templates.update(templates)
        self.cache = cache if cache is not None else TTLCache()

    def register(self, template_id: str, template: Mapping[str, Any]) -> PolicyConfig:
        cfg = load_policy(template)
        self._templates[template_id] = template
        self.cache.invalidate(template_id)
        logger.info("[policy_provider] registered template=%s", template_id)
        return cfg

    def load_file(self, path: str | Path) -> int:
        """Load a JSON object of {template_id: template}. Returns the number of templates loaded."""
        p = Path(path)
        if not p.exists():
            logger.warning("[policy_provider] templates file missing at %s", p)
            return 0
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        for template_id, template in data.items():
            self.register(template_id, template)
        return len(data)

    def get(self, template_id: str) -> PolicyConfig:
        cached = self.cache.get(template_id)
        if cached is not None:
            return cached
        template = self._templates.get(template_id)
        if template is None:
            raise PolicyNotFoundError(template_id)
        cfg = load_policy(template)
        self.cache.set(template_id, cfg)
        return cfg

    @classmethod
    def from_env(cls) -> "PolicyProvider":
        provider = cls()
        if POLICY_TEMPLATES_PATH:
            provider.load_file(POLICY_TEMPLATES_PATH)
        return provider
