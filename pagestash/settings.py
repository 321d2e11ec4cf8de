import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

import yaml

DEFAULT_ROOT = Path.home() / ".pagestash"
DEFAULT_API_URL = "http://127.0.0.1:8000/api/v1"

# -------------------- Settings --------------------


@dataclass
class Settings:
    root: Path = DEFAULT_ROOT
    api_url: str = DEFAULT_API_URL
    timeout: float = 15.0
    workers: int = 16
    page_workers: int = 4
    max_bytes: int = 50_000_000
    extra_headers: List[str] = field(default_factory=list)  # "Name: value"

    @property
    def catalog_root(self) -> Path:
        return self.root / "sites"

    @property
    def credentials_path(self) -> Path:
        return self.root / "credentials"


# -------------------- Config loader --------------------

CONFIG_GROUPS = ("general", "api", "capture", "sync")


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


def flatten_config(cfg: Dict) -> Dict:
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in CONFIG_GROUPS:
        if isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    # config keys use dashes or underscores; argparse dests use underscores
    return {k.replace("-", "_"): v for k, v in flat.items()}
