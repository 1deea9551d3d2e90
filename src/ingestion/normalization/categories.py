"""
Category and city mapping driven by a locale keyword table.

The table lives in ingestion.yaml under `categories`:

    categories:
      default: Other
      canonical: [Entertainment, Arts & Culture, ...]
      keywords:
        en: {concert: Entertainment, ...}
        cs: {koncert: Entertainment, ...}
      city_aliases: {prague: Praha, ...}

Adding a language means adding a keyword block, not code.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from src.configs.config import Config
from src.ingestion.normalization.dates import fold
from src.schemas.event import DEFAULT_CATEGORY


class CategoryMapper:
    """Map free-text category hints and city names to canonical values."""

    def __init__(
        self,
        canonical: Iterable[str],
        keywords: Optional[Dict[str, Dict[str, str]]] = None,
        city_aliases: Optional[Dict[str, str]] = None,
        default: str = DEFAULT_CATEGORY,
    ):
        self.canonical = list(canonical)
        self.default = default
        self._canonical_by_key = {fold(c): c for c in self.canonical}
        self._keywords: Dict[str, List[Tuple[re.Pattern, str]]] = {}
        for locale, table in (keywords or {}).items():
            entries = sorted(table.items(), key=lambda kv: len(kv[0]), reverse=True)
            self._keywords[locale] = [
                (re.compile(rf"\b{re.escape(fold(word))}"), category)
                for word, category in entries
                if category in self.canonical
            ]
        self._city_aliases = {fold(k): v for k, v in (city_aliases or {}).items()}

    @classmethod
    def from_config(cls, section: Optional[dict] = None) -> "CategoryMapper":
        section = section if section is not None else Config.section("categories", {})
        return cls(
            canonical=section.get("canonical") or [DEFAULT_CATEGORY],
            keywords=section.get("keywords") or {},
            city_aliases=section.get("city_aliases") or {},
            default=section.get("default") or DEFAULT_CATEGORY,
        )

    @property
    def locales(self) -> List[str]:
        return list(self._keywords)

    def _locale_order(self, locale: Optional[str]) -> List[str]:
        if locale and locale in self._keywords:
            return [locale] + [loc for loc in self._keywords if loc != locale]
        return list(self._keywords)

    def _search(self, text: str, locale: Optional[str]) -> Optional[str]:
        folded = fold(text)
        for loc in self._locale_order(locale):
            for pattern, category in self._keywords[loc]:
                if pattern.search(folded):
                    return category
        return None

    def map_category(
        self,
        hint: Optional[str],
        text: str = "",
        locale: Optional[str] = None,
    ) -> str:
        """
        Resolve a canonical category.

        Checks, in order: the hint as a canonical name, keywords within the
        hint, keywords within the supporting text. Falls back to the default.
        """
        if hint:
            canonical = self._canonical_by_key.get(fold(hint.strip()))
            if canonical:
                return canonical
            found = self._search(hint, locale)
            if found:
                return found
        if text:
            found = self._search(text, locale)
            if found:
                return found
        return self.default

    def normalize_city(self, city: Optional[str]) -> Optional[str]:
        if not city:
            return None
        cleaned = re.sub(r"\s+", " ", city).strip().strip(",")
        if not cleaned:
            return None
        # "Praha 1" / "Brno-střed" style districts map to the base city
        base = re.split(r"[\s,-]+\d|\s*-\s*|,", cleaned)[0].strip() or cleaned
        alias = self._city_aliases.get(fold(base)) or self._city_aliases.get(fold(cleaned))
        return alias or cleaned
