from __future__ import annotations

import pytest

from mediabot.services.parser import (
    MediaKind,
    ParsedCandidate,
    ParserService,
    clean_title,
    confidence_band,
    normalize_title,
)


@pytest.fixture
def parser() -> ParserService:
    return ParserService()


def test_release_name_with_year_and_episode_title(parser) -> None:
    result = parser.parse("Mr.and.Mrs.Smith.2024.S01E01.First.Date.1080p.WEB-DL.x264.mkv")

    assert result.kind == MediaKind.TV
    assert result.title == "Mr and Mrs Smith"
    assert result.year == 2024
    assert result.season == 1
    assert result.episode == 1
    assert result.episode_title_guess == "First Date"
    assert result.confidence == pytest.approx(0.9)
    assert result.pattern == "year_episode_title"


@pytest.mark.parametrize(
    "filename, title, season, episode, episode_title",
    [
        ("Breaking Bad - S01E02 - Cat's in the Bag.mkv", "Breaking Bad", 1, 2, "Cat's in the Bag"),
        ("The Office - S03E10 - A Benihana Christmas.mp4", "The Office", 3, 10, "A Benihana Christmas"),
        ("Dark - S1E1 - Secrets.avi", "Dark", 1, 1, "Secrets"),
    ],
)
def test_already_formatted_names_are_confident_tv(parser, filename, title, season, episode, episode_title) -> None:
    result = parser.parse(filename)

    assert result.kind == MediaKind.TV
    assert result.confidence >= 0.9
    assert result.title == title
    assert (result.season, result.episode) == (season, episode)
    assert result.episode_title_guess == episode_title


@pytest.mark.parametrize(
    "filename",
    [
        "Show.Name.2019.S02E05.720p.mkv",
        "Some Movie 2021 S01E03.mkv",
        "Title.(2010).S04E01.HDTV.mkv",
        "Mr.and.Mrs.Smith.2024.S01E01.First.Date.1080p.WEB-DL.x264.mkv",
    ],
)
def test_year_plus_episode_token_is_never_a_movie(parser, filename) -> None:
    assert parser.parse(filename).kind == MediaKind.TV


def test_trailing_year_is_split_from_series_title(parser) -> None:
    result = parser.parse("Show.Name.2019.S02E05.720p.mkv")

    assert result.title == "Show Name"
    assert result.year == 2019
    assert (result.season, result.episode) == (2, 5)
    assert result.confidence == pytest.approx(0.75)


def test_cross_notation(parser) -> None:
    result = parser.parse("Friends - 3x12 - The One with All the Jealousy.mkv")

    assert result.kind == MediaKind.TV
    assert result.title == "Friends"
    assert (result.season, result.episode) == (3, 12)


def test_season_episode_words(parser) -> None:
    result = parser.parse("Show Season 2 Episode 3.mkv")

    assert result.kind == MediaKind.TV
    assert result.title == "Show"
    assert (result.season, result.episode) == (2, 3)


def test_dotted_movie(parser) -> None:
    result = parser.parse("Movie.Title.2010.1080p.BluRay.x264.mkv")

    assert result.kind == MediaKind.MOVIE
    assert result.title == "Movie Title"
    assert result.year == 2010
    assert result.confidence == pytest.approx(0.6)


def test_parenthesised_movie_year(parser) -> None:
    result = parser.parse("The Matrix (1999).mkv")

    assert result.kind == MediaKind.MOVIE
    assert result.title == "The Matrix"
    assert result.year == 1999


def test_movie_with_subtitle(parser) -> None:
    result = parser.parse("Inception (2010) - Directors Cut.mkv")

    assert result.kind == MediaKind.MOVIE
    assert result.title == "Inception"
    assert result.confidence == pytest.approx(0.8)


def test_movie_candidates_are_penalised_when_episode_token_present(parser) -> None:
    candidates = parser.candidates("Show.Name.2019.S02E05.720p", "Show.Name.2019.S02E05.720p.mkv")
    movies = [c for c in candidates if c.kind == MediaKind.MOVIE]

    assert movies
    assert all(c.confidence == pytest.approx(0.6 * 0.3) for c in movies)


def test_unmatched_name_falls_back_to_unknown(parser) -> None:
    result = parser.parse("random_clip.mkv")

    assert result.kind == MediaKind.UNKNOWN
    assert result.title == "random clip"
    assert result.confidence == 0.0


def test_template_literal_name_parses_parent_folder(parser) -> None:
    result = parser.parse(
        "{n} - {s00e00} - {t}.mkv",
        "/downloads/Show.S01E02.720p/{n} - {s00e00} - {t}.mkv",
    )

    assert result.kind == MediaKind.TV
    assert result.title == "Show"
    assert (result.season, result.episode) == (1, 2)


def test_template_literal_name_without_path_is_unknown(parser) -> None:
    result = parser.parse("{n} - {s00e00} - {t}.mkv")

    assert result.kind == MediaKind.UNKNOWN
    assert result.title == "Unknown"
    assert result.confidence == 0.0


def test_tv_candidate_without_numbers_is_demoted() -> None:
    candidate = ParsedCandidate(kind=MediaKind.TV, title="Show", source_filename="x.mkv", season=1)

    assert candidate.kind == MediaKind.UNKNOWN


def test_confidence_is_clamped() -> None:
    high = ParsedCandidate(kind=MediaKind.MOVIE, title="A", source_filename="a.mkv", confidence=1.7)
    low = ParsedCandidate(kind=MediaKind.MOVIE, title="A", source_filename="a.mkv", confidence=-0.2)

    assert high.confidence == 1.0
    assert low.confidence == 0.0


def test_clean_title_strips_release_artifacts() -> None:
    assert clean_title("Show.Name.1080p.WEB-DL.x264-GROUP") == "Show Name"
    assert clean_title("[Group] Show_Name") == "Show Name"


def test_normalize_title() -> None:
    assert normalize_title("Mr. & Mrs. Smith") == "mr and mrs smith"


def test_confidence_band() -> None:
    assert confidence_band(0.85) == "high"
    assert confidence_band(0.8) == "high"
    assert confidence_band(0.7) == "medium"
    assert confidence_band(0.2) == "low"
