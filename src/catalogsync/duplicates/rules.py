"""VariantRules — recognize product variants so they are not reported as duplicates."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from catalogsync.exceptions import InvalidRequestError

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_COLOR_WORDS: tuple[str, ...] = ("negro", "blanco", "rojo", "azul", "amarillo", "verde")
DEFAULT_VARIANT_TYPE_WORDS: tuple[str, ...] = ("macho", "hembra", "fijo", "giratorio")

_DESCRIPTION_KEYS = ("descripcion", "description", "nombre")
_MANUFACTURER_KEYS = ("codigo_fabricante", "manufacturer_code")
_PART_NUMBER_KEYS = ("numero_parte", "part_number")

_QUOTES = re.compile(r"[“”‘’']")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class CustomPattern:
    """A named regex replacement applied during normalization."""

    name: str
    regex: str
    replacement: str = " "
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class VariantRules:
    """Rules deciding whether two similar products are variants of one another.

    Two strategies, each switchable:

    * manufacturer code: same manufacturer code but different part numbers
      means variants;
    * description normalization: strip color words, variant-type words and
      the configured patterns; identical normalized descriptions longer than
      ``min_normalized_length`` mean variants.

    Variant pairs are not linked during duplicate detection.
    """

    color_words: tuple[str, ...] = DEFAULT_COLOR_WORDS
    color_words_enabled: bool = True
    variant_type_words: tuple[str, ...] = DEFAULT_VARIANT_TYPE_WORDS
    variant_type_words_enabled: bool = True
    patterns: tuple[str, ...] = ()
    custom_patterns: tuple[CustomPattern, ...] = ()
    use_manufacturer_code: bool = True
    use_description_normalization: bool = True
    min_normalized_length: int = 10
    _compiled: tuple[tuple[re.Pattern[str], str], ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        compiled: list[tuple[re.Pattern[str], str]] = []
        words: list[str] = []
        if self.color_words_enabled:
            words.extend(self.color_words)
        if self.variant_type_words_enabled:
            words.extend(self.variant_type_words)
        for word in words:
            if word.strip():
                compiled.append((re.compile(rf"\b{re.escape(word.strip())}\b", re.IGNORECASE), " "))
        for pattern in self.patterns:
            compiled.append((_compile(pattern), " "))
        for custom in self.custom_patterns:
            if custom.enabled:
                compiled.append((_compile(custom.regex, custom.name), custom.replacement or " "))
        object.__setattr__(self, "_compiled", tuple(compiled))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantRules:
        """Build rules from a JSON-shaped mapping.

        Accepts ``{"colorWords": {"enabled": true, "words": [...]},
        "variantTypeWords": {...}, "patterns": {"<name>": {"enabled": true,
        "regex": "..."}} | [...], "customPatterns": [...], "strategy": {...}}``
        as well as the snake_case field names.
        """
        colors = _section(data, "colorWords", "color_words")
        variants = _section(data, "variantTypeWords", "variant_type_words")
        strategy = _section(data, "strategy", "strategy")

        raw_patterns = data.get("patterns") or ()
        patterns: list[str] = []
        if isinstance(raw_patterns, dict):
            for config in raw_patterns.values():
                if not isinstance(config, dict) or not config.get("enabled", True):
                    continue
                if config.get("regex"):
                    patterns.append(str(config["regex"]))
                patterns.extend(str(p) for p in config.get("patterns") or ())
        else:
            patterns.extend(str(p) for p in raw_patterns)

        raw_custom = data.get("customPatterns", data.get("custom_patterns")) or ()
        custom = tuple(
            CustomPattern(
                name=str(c.get("name", "custom")),
                regex=str(c["regex"]),
                replacement=str(c.get("replacement") or " "),
                enabled=bool(c.get("enabled", True)),
            )
            for c in raw_custom
        )

        return cls(
            color_words=tuple(colors.get("words", DEFAULT_COLOR_WORDS)),
            color_words_enabled=bool(colors.get("enabled", True)),
            variant_type_words=tuple(variants.get("words", DEFAULT_VARIANT_TYPE_WORDS)),
            variant_type_words_enabled=bool(variants.get("enabled", True)),
            patterns=tuple(patterns),
            custom_patterns=custom,
            use_manufacturer_code=bool(
                strategy.get("useManufacturerCode", strategy.get("use_manufacturer_code", True))
            ),
            use_description_normalization=bool(
                strategy.get(
                    "useDescriptionNormalization",
                    strategy.get("use_description_normalization", True),
                )
            ),
            min_normalized_length=int(
                strategy.get("minNormalizedLength", strategy.get("min_normalized_length", 10))
            ),
        )

    def normalize(self, text: str) -> str:
        """Lowercase *text* and strip every variant marker the rules know about."""
        normalized = str(text).lower()
        for pattern, replacement in self._compiled:
            normalized = pattern.sub(replacement, normalized)
        normalized = _QUOTES.sub('"', normalized)
        return _SPACES.sub(" ", normalized).strip()

    def are_variants(self, a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
        """Return ``True`` if payloads *a* and *b* describe variants of one product."""
        if self.use_manufacturer_code:
            code_a, code_b = _first(a, _MANUFACTURER_KEYS), _first(b, _MANUFACTURER_KEYS)
            part_a, part_b = _first(a, _PART_NUMBER_KEYS), _first(b, _PART_NUMBER_KEYS)
            if code_a and code_a == code_b and part_a and part_b and part_a != part_b:
                return True

        if self.use_description_normalization:
            desc_a, desc_b = _first(a, _DESCRIPTION_KEYS), _first(b, _DESCRIPTION_KEYS)
            if desc_a and desc_b and desc_a != desc_b:
                norm_a, norm_b = self.normalize(desc_a), self.normalize(desc_b)
                if norm_a == norm_b and len(norm_a) > self.min_normalized_length:
                    return True
        return False


def _compile(pattern: str, name: str | None = None) -> re.Pattern[str]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        label = f"pattern {name!r}" if name else f"pattern {pattern!r}"
        msg = f"Invalid variant rule {label}: {exc}"
        raise InvalidRequestError(msg) from exc


def _section(data: Mapping[str, Any], camel: str, snake: str) -> dict[str, Any]:
    value = data.get(camel, data.get(snake))
    return dict(value) if isinstance(value, dict) else {}


def _first(payload: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""
