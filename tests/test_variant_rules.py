"""Tests for VariantRules."""

from __future__ import annotations

import pytest

from catalogsync.duplicates.rules import CustomPattern, VariantRules
from catalogsync.exceptions import InvalidRequestError


class TestNormalize:
    def test_strips_color_and_type_words(self) -> None:
        rules = VariantRules()
        assert rules.normalize("Conector  MACHO rojo 1/2''") == 'conector 1/2""'

    def test_disabled_word_lists(self) -> None:
        rules = VariantRules(color_words_enabled=False, variant_type_words_enabled=False)
        assert rules.normalize("Conector macho rojo") == "conector macho rojo"

    def test_whole_words_only(self) -> None:
        assert VariantRules().normalize("Rojizo") == "rojizo"

    def test_patterns_and_custom_patterns(self) -> None:
        rules = VariantRules(
            patterns=(r"\b\d+\s*mm\b",),
            custom_patterns=(
                CustomPattern(name="pack", regex=r"\bx\d+\b", replacement=" "),
                CustomPattern(name="off", regex="tubo", enabled=False),
            ),
        )
        assert rules.normalize("Tubo PVC 20 mm x12") == "tubo pvc"

    def test_invalid_regex(self) -> None:
        with pytest.raises(InvalidRequestError, match="broken"):
            VariantRules(custom_patterns=(CustomPattern(name="broken", regex="(unclosed"),))


class TestAreVariants:
    def test_color_variants(self) -> None:
        rules = VariantRules()
        a = {"descripcion": "Cable electrico flexible negro"}
        b = {"descripcion": "Cable electrico flexible blanco"}
        assert rules.are_variants(a, b)

    def test_identical_descriptions_are_not_variants(self) -> None:
        a = {"descripcion": "Cable electrico flexible negro"}
        assert not VariantRules().are_variants(a, dict(a))

    def test_short_normalized_text_is_not_variant(self) -> None:
        a = {"descripcion": "Tapa rojo"}
        b = {"descripcion": "Tapa azul"}
        assert VariantRules().normalize(a["descripcion"]) == "tapa"
        assert not VariantRules().are_variants(a, b)

    def test_manufacturer_code_with_different_part_numbers(self) -> None:
        a = {"codigo_fabricante": "FAB-1", "numero_parte": "A1", "descripcion": "x"}
        b = {"codigo_fabricante": "FAB-1", "numero_parte": "A2", "descripcion": "y"}
        assert VariantRules().are_variants(a, b)
        assert not VariantRules(use_manufacturer_code=False).are_variants(a, b)

    def test_same_part_number_is_not_variant(self) -> None:
        a = {"codigo_fabricante": "FAB-1", "numero_parte": "A1"}
        assert not VariantRules().are_variants(a, dict(a))

    def test_description_strategy_disabled(self) -> None:
        rules = VariantRules(use_description_normalization=False)
        a = {"descripcion": "Cable electrico flexible negro"}
        b = {"descripcion": "Cable electrico flexible blanco"}
        assert not rules.are_variants(a, b)


class TestFromDict:
    def test_camel_case_config(self) -> None:
        rules = VariantRules.from_dict(
            {
                "colorWords": {"enabled": True, "words": ["gris"]},
                "variantTypeWords": {"enabled": False},
                "patterns": {
                    "sizes": {"enabled": True, "regex": r"\b\d+\s*mm\b"},
                    "disabled": {"enabled": False, "regex": "cable"},
                },
                "customPatterns": [{"name": "pack", "regex": r"\bx\d+\b"}],
                "strategy": {"useManufacturerCode": False, "minNormalizedLength": 3},
            }
        )
        assert rules.color_words == ("gris",)
        assert rules.variant_type_words_enabled is False
        assert rules.patterns == (r"\b\d+\s*mm\b",)
        assert rules.custom_patterns[0].name == "pack"
        assert rules.use_manufacturer_code is False
        assert rules.min_normalized_length == 3
        assert rules.normalize("Cable gris 10 mm x4 macho") == "cable macho"

    def test_snake_case_and_list_patterns(self) -> None:
        rules = VariantRules.from_dict(
            {"color_words": {"words": ["rojo"]}, "patterns": ["kit"], "strategy": {}}
        )
        assert rules.color_words == ("rojo",)
        assert rules.patterns == ("kit",)

    def test_empty_config_uses_defaults(self) -> None:
        assert VariantRules.from_dict({}) == VariantRules()
