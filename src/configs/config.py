# src/configs/config.py
import yaml
from pathlib import Path
from functools import lru_cache


class Config:
    """
    Static configuration for the event ingestion pipeline.

    Crawl presets, host rules, navigation text matchers, the category lookup
    table and declared sources live in ingestion.yaml next to this module.
    """

    # This points to src/configs/
    CONFIG_DIR = Path(__file__).parent.resolve()
    PROJECT_ROOT = CONFIG_DIR.parent.parent

    INGESTION_CONFIG_PATH = CONFIG_DIR / "ingestion.yaml"

    @classmethod
    @lru_cache
    def load_ingestion_config(cls) -> dict:
        """Loads the YAML configuration for ingestion."""
        if not cls.INGESTION_CONFIG_PATH.exists():
            raise FileNotFoundError(f"Missing config at {cls.INGESTION_CONFIG_PATH}")

        with open(cls.INGESTION_CONFIG_PATH, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def section(cls, name: str, default=None):
        """Return a top-level section of ingestion.yaml."""
        value = cls.load_ingestion_config().get(name)
        return default if value is None else value
