import os
from functools import lru_cache
from pathlib import Path

import yaml

CONFIG_DIR = Path(__file__).resolve().parent / "config"


def deep_merge(a, b):
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(a.get(k), dict):
            deep_merge(a[k], v)
        elif v is None and k in a:
            a.pop(k, None)  # null in the overlay removes the key
        else:
            a[k] = v
    return a


def load_config(env: str | None = None) -> dict:
    """common.yaml + <env>.yaml (COOPBUS_ENV, default 'development')"""
    env = env or os.getenv("COOPBUS_ENV", "development")
    with open(CONFIG_DIR / "common.yaml") as f:
        common_cfg = yaml.safe_load(f) or {}

    overlay = CONFIG_DIR / f"{env}.yaml"
    if not overlay.exists():
        return common_cfg
    with open(overlay) as f:
        env_cfg = yaml.safe_load(f) or {}

    return deep_merge(common_cfg, env_cfg)


@lru_cache(maxsize=1)
def get_settings() -> dict:
    return load_config()
