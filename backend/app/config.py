import os
import yaml
from typing import Any, Mapping, Optional


CONFIG_PATH = os.environ.get("VTO_CONFIG", "configs/tryon.yaml")


class Settings:
    def __init__(self, path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> None:
        self._cfg: dict[str, Any] = {}
        self._env = os.environ if env is None else env
        path = path or CONFIG_PATH
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                self._cfg = yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        # Env wins over YAML
        env_key = key.upper().replace(".", "_")
        if env_key in self._env:
            return self._env[env_key]

        # Dot path lookup in YAML
        parts = key.split(".")
        cur: Any = self._cfg
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(self.get(key, default))
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float) -> float:
        try:
            return float(self.get(key, default))
        except (TypeError, ValueError):
            return default


settings = Settings()
