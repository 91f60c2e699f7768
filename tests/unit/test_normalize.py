"""Unit tests for ffa_calendar_etl.normalize."""

from __future__ import annotations

from datetime import date

import pytest

from ffa_calendar_etl.normalize import (
    classify_organizer_url,
    clean_event_name,
    extract_keywords,
    levenshtein,
    normalize_department_code,
    normalize_space,
    normalize_text,
    parse_clock_time,
    parse_day_month,
    parse_distance,
    parse_elevation,
    parse_french_date,
    remove_edition_number,
    remove_stopwords,
    trim,
)


class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_to_none(self):
        assert trim("") is None
        assert trim("   ") is None

    def test_none_passthrough(self):
        assert trim(None) is None


class TestNormalizeSpace:
    def test_collapses_internal_runs(self):
        assert normalize_space("Trail   des\n Loups") == "Trail des Loups"

    def test_blank_to_none(self):
        assert normalize_space(" \t ") is None


class TestNormalizeText:
    def test_lowercases_and_strips_accents(self):
        assert normalize_text("Écrins Été") == "ecrins ete"

    def test_punctuation_becomes_space(self):
        assert normalize_text("Trail des Écrins – l’Ultra") == "trail des ecrins l ultra"

    def test_none_is_empty(self):
        assert normalize_text(None) == ""


class TestRemoveEditionNumber:
    @pytest.mark.parametrize("raw,expected", [
        ("Trail des Loups - 34ème édition", "Trail des Loups"),
        ("34ème Trail des Loups", "Trail des Loups"),
        ("3e Corrida de Noël", "Corrida de Noël"),
        ("Foulées Annéciennes #3", "Foulées Annéciennes"),
        ("Corrida de Noël 2025", "Corrida de Noël"),
        ("Trail des Crêtes (Annecy)", "Trail des Crêtes"),
    ])
    def test_markers_removed(self, raw, expected):
        assert remove_edition_number(raw) == expected

    def test_plain_name_unchanged(self):
        assert remove_edition_number("Trail de la Raye") == "Trail de la Raye"

    def test_none_is_empty(self):
        assert remove_edition_number(None) == ""


class TestStopwordsAndKeywords:
    def test_remove_stopwords(self):
        assert remove_stopwords("la corrida de noel") == "noel"

    def test_short_tokens_dropped(self):
        assert remove_stopwords("tour du lac", min_length=5) == ""

    def test_extract_keywords_longest_first(self):
        assert extract_keywords("trail des loups annecy") == ["annecy", "loups"]


class TestLevenshtein:
    def test_classic_example(self):
        assert levenshtein("kitten", "sitting") == 3

    def test_identical(self):
        assert levenshtein("abc", "abc") == 0

    def test_empty_side(self):
        assert levenshtein("", "abc") == 3
        assert levenshtein("abc", "") == 3


class TestParseFrenchDate:
    def test_full_date(self):
        assert parse_french_date("15 novembre 2025") == date(2025, 11, 15)

    def test_first_of_month_with_default_year(self):
        assert parse_french_date("1er décembre", default_year=2025) == date(2025, 12, 1)

    def test_numeric(self):
        assert parse_french_date("15/11/2025") == date(2025, 11, 15)

    def test_numeric_without_year(self):
        assert parse_french_date("15/06", default_year=2025) == date(2025, 6, 15)

    def test_missing_year_without_default(self):
        assert parse_french_date("15 novembre") is None

    def test_invalid_day(self):
        assert parse_french_date("31 février 2025") is None

    def test_unknown_month(self):
        assert parse_french_date("15 brumaire 2025") is None


class TestParseDayMonth:
    def test_valid(self):
        assert parse_day_month("17/01") == (17, 1)

    def test_out_of_range(self):
        assert parse_day_month("17/13") is None

    def test_not_a_sub_date(self):
        assert parse_day_month("1/2 Marathon") is None


class TestParseDistance:
    @pytest.mark.parametrize("raw,expected", [
        ("10 km", 10000),
        ("21,1km", 21100),
        ("800m", 800),
        ("13000 m", 13000),
        ("42", 42000),
        ("150", 150),
    ])
    def test_values(self, raw, expected):
        assert parse_distance(raw) == expected

    def test_garbage(self):
        assert parse_distance("distance inconnue") is None

    def test_none(self):
        assert parse_distance(None) is None


class TestParseElevation:
    @pytest.mark.parametrize("raw,expected", [
        ("D+ 450", 450),
        ("210 m D+", 210),
        ("Dénivelé: 1200m", 1200),
        ("450", 450),
    ])
    def test_values(self, raw, expected):
        assert parse_elevation(raw) == expected

    def test_garbage(self):
        assert parse_elevation("plat") is None


class TestParseClockTime:
    @pytest.mark.parametrize("raw,expected", [
        ("9h30", "09:30"),
        ("14:00", "14:00"),
        ("09 h 05", "09:05"),
    ])
    def test_values(self, raw, expected):
        assert parse_clock_time(raw) == expected

    def test_out_of_range(self):
        assert parse_clock_time("25h00") is None

    def test_no_time(self):
        assert parse_clock_time("matin") is None


class TestCleanEventName:
    def test_leading_time_removed(self):
        assert clean_event_name("14h30 - Trail 12 km") == "Trail 12 km"

    def test_leading_separator_removed(self):
        assert clean_event_name("- Marche nordique") == "Marche nordique"

    def test_only_time_is_none(self):
        assert clean_event_name("14h30 -") is None


class TestClassifyOrganizerUrl:
    def test_facebook(self):
        assert classify_organizer_url("https://www.facebook.com/trail") == (
            "facebookUrl", "https://www.facebook.com/trail",
        )

    def test_instagram(self):
        assert classify_organizer_url("https://instagram.com/trail")[0] == "instagramUrl"

    def test_website(self):
        assert classify_organizer_url(" https://trail-des-loups.fr ") == (
            "websiteUrl", "https://trail-des-loups.fr",
        )

    def test_none(self):
        assert classify_organizer_url(None) is None


class TestNormalizeDepartmentCode:
    @pytest.mark.parametrize("raw,expected", [
        ("074", "74"),
        ("74", "74"),
        ("974", "974"),
        ("2a", "2A"),
        (None, ""),
    ])
    def test_codes(self, raw, expected):
        assert normalize_department_code(raw) == expected
