"""
Config cache module.

Provides in-memory caching of the engine settings (engine.yaml) and the
line-of-business seed catalogue (seed.json) so they are read from disk once
per process.
"""

import copy
import json
import os
from typing import Dict, Any, Optional, List
from threading import Lock

import yaml

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "config")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "codes": {
        "client_prefix": "MEIBL/CL",
        "policy_prefix": "MEIBL/PL",
        "endorsement_prefix": "END",
        "slip_prefix": "BRK",
        "sequence_width": 5,
        "slip_sequence_width": 6,
        "client_types": {
            "individual": "IND",
            "ind": "IND",
            "corporate": "CORP",
            "corp": "CORP",
        },
    },
    "sequences": {
        "max_retries": 5,
        "retry_backoff_seconds": 0.05,
    },
    "slips": {
        "validity_days": 30,
    },
    "policies": {
        "default_term_days": 365,
        "converted_status": "active",
    },
    "authorization": {
        "approve_level": "L2",
        "issue_level": "L3",
        "override_role": "Admin",
        "endorsement_roles": ["Underwriter", "Admin"],
    },
    "financials": {
        "currency": "NGN",
        "default_vat_pct": 7.5,
        "default_agent_commission_pct": 0,
        "levy_rates": {"naicom": 1.0, "ncrib": 0.5, "ed_tax": 0.5},
        "brokerage_slabs": [
            {"name": "Premium", "min_gross_premium": 10000000, "pct": 20},
            {"name": "Standard", "min_gross_premium": 1000000, "pct": 15},
            {"name": "Basic", "min_gross_premium": 0, "pct": 9},
        ],
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay override onto a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigCache:
    """Thread-safe configuration cache."""

    def __init__(self, settings_path: Optional[str] = None, seed_path: Optional[str] = None):
        self._settings_path = settings_path
        self._seed_path = seed_path
        self._settings: Optional[Dict[str, Any]] = None
        self._seed_data: Optional[Dict[str, Any]] = None
        self._lock = Lock()

    def _resolve_settings_path(self) -> str:
        return (
            self._settings_path
            or os.getenv("BROKERDESK_CONFIG_PATH")
            or os.path.join(CONFIG_DIR, "engine.yaml")
        )

    def get_settings(self) -> Dict[str, Any]:
        """Get cached engine settings, loading from disk if not cached."""
        if self._settings is None:
            with self._lock:
                if self._settings is None:  # Double-check locking
                    path = self._resolve_settings_path()
                    raw: Dict[str, Any] = {}
                    if os.path.exists(path):
                        with open(path, "r") as f:
                            raw = yaml.safe_load(f) or {}
                    self._settings = _merge(DEFAULT_SETTINGS, raw)
        return self._settings

    def get_section(self, name: str) -> Dict[str, Any]:
        return self.get_settings().get(name, {})

    def get_seed_data(self) -> Dict[str, Any]:
        """Get cached line-of-business seed data."""
        if self._seed_data is None:
            with self._lock:
                if self._seed_data is None:
                    path = self._seed_path or os.path.join(CONFIG_DIR, "seed.json")
                    if os.path.exists(path):
                        with open(path, "r") as f:
                            self._seed_data = json.load(f)
                    else:
                        self._seed_data = {}
        return self._seed_data

    def get_lines_of_business(self) -> List[Dict[str, Any]]:
        return self.get_seed_data().get("lines_of_business", [])

    def clear_cache(self):
        """Clear all cached data (useful for testing)."""
        with self._lock:
            self._settings = None
            self._seed_data = None


# Global config cache instance
config_cache = ConfigCache()
