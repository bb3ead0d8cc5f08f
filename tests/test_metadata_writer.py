from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FFMPEG_FAIL, FFMPEG_HANG, FFMPEG_OK, FFMPEG_VERSION, tmp_files, touch
from mediabot.services.cancellation import CancelToken
from mediabot.services.errors import OperationCancelled, SourceMissing, SubprocessFailure
from mediabot.services.metadata_writer import (
    MetadataWriterService,
    build_metadata_map,
    parse_container_info,
    sanitize_metadata_value,
)

EPISODE = {
    "media_type": "tv",
    "title": "Breaking Bad",
    "year": 2008,
    "season": 1,
    "episode": 2,
    "episode_title": "Cat's in the Bag...",
    "overview": "Walt and Jesse clean up.",
    "source": "tmdb",
    "confidence": 0.9,
}


def test_failed_write_leaves_source_untouched(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original bytes")
    before = source.stat().st_mtime_ns
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_FAIL))

    with pytest.raises(SubprocessFailure) as excinfo:
        asyncio.run(writer.write(str(source), {"title": "X"}))

    assert excinfo.value.exit_code == 1
    assert "broken input" in excinfo.value.stderr
    assert source.read_text() == "original bytes"
    assert source.stat().st_mtime_ns == before
    assert tmp_files(tmp_path) == []


def test_successful_write_replaces_source(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original\n")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))

    asyncio.run(writer.write(str(source), {"title": "X"}))

    assert source.read_text() == "original\ntagged\n"
    assert tmp_files(tmp_path) == []


def test_missing_binary_is_a_subprocess_failure(tmp_path) -> None:
    source = touch(tmp_path / "a.mkv", "original")
    writer = MetadataWriterService(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(SubprocessFailure):
        asyncio.run(writer.write(str(source), {"title": "X"}))
    assert source.read_text() == "original"


def test_missing_source_is_rejected(tmp_path) -> None:
    with pytest.raises(SourceMissing):
        asyncio.run(MetadataWriterService().write(str(tmp_path / "nope.mkv"), {}))


def test_cancel_kills_transcoder_and_removes_temp(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_HANG))

    async def run():
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.3, token.cancel)
        await writer.write(str(source), {"title": "X"}, token)

    with pytest.raises(OperationCancelled):
        asyncio.run(run())
    assert source.read_text() == "original"
    assert tmp_files(tmp_path) == []


def test_stage_then_apply_marks_sidecar(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original\n")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))

    writer.stage(str(source), build_metadata_map(EPISODE), 0.9)
    staged = json.loads((tmp_path / "a.mkv.metadata.json").read_text())
    assert staged["applied"] is False
    assert staged["mediaType"] == "10"
    assert staged["metadata"]["show"] == "Breaking Bad"

    result = asyncio.run(writer.apply_staged(str(source)))

    assert result.success is True
    applied = writer.check_staged(str(source))
    assert applied.applied is True
    assert applied.applied_timestamp


def test_apply_without_sidecar_is_not_staged(tmp_path) -> None:
    source = touch(tmp_path / "a.mkv")

    result = asyncio.run(MetadataWriterService().apply_staged(str(source)))

    assert result.success is False
    assert result.error_kind == "not_staged"


def test_failed_apply_keeps_sidecar_unapplied(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_FAIL))
    writer.stage(str(source), {"title": "X"})

    result = asyncio.run(writer.apply_staged(str(source)))

    assert result.error_kind == "subprocess"
    assert writer.check_staged(str(source)).applied is False


def test_applied_files_short_circuit_without_fetching(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original\n")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))
    calls = []

    async def fetch(path):
        calls.append(path)
        return EPISODE

    async def run():
        first = await writer.fetch_and_write(str(source), fetch)
        second = await writer.fetch_and_write(str(source), fetch)
        return first, second

    first, second = asyncio.run(run())

    assert first.success is True and first.skipped is False
    assert second.skipped is True
    assert calls == [str(source)]
    assert source.read_text() == "original\ntagged\n"


def test_staged_files_are_applied_without_fetching(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv")
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))
    writer.stage(str(source), {"title": "X"})

    async def fetch(path):
        raise AssertionError("fetch should not be called")

    result = asyncio.run(writer.fetch_and_write(str(source), fetch))

    assert result.success is True
    assert writer.check_staged(str(source)).applied is True


def test_fetch_returning_nothing_is_no_match(tmp_path) -> None:
    source = touch(tmp_path / "a.mkv")

    async def fetch(path):
        return None

    result = asyncio.run(MetadataWriterService().fetch_and_write(str(source), fetch))

    assert result.error_kind == "no_match"


def test_batch_reports_per_file(tmp_path, write_script) -> None:
    good = touch(tmp_path / "good.mkv")
    missing = tmp_path / "missing.mkv"
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))

    async def fetch(path):
        return EPISODE

    results = asyncio.run(writer.fetch_and_write_batch([str(good), str(missing)], fetch))

    assert [r.success for r in results] == [True, False]
    assert results[1].error_kind == "source_missing"


def test_tv_metadata_map() -> None:
    tags = build_metadata_map(EPISODE)

    assert tags["title"] == "Cat's in the Bag..."
    assert tags["show"] == "Breaking Bad"
    assert tags["season_number"] == "1"
    assert tags["episode_sort"] == "2"
    assert tags["media_type"] == "10"
    assert tags["genre"] == "TV Show"
    assert tags["encoder"] == "MediaBot via tmdb"
    assert tags["comment"] == "Walt and Jesse clean up. [Source: tmdb] [Confidence: 90.0%]"


def test_movie_metadata_map() -> None:
    tags = build_metadata_map({"media_type": "movie", "title": "Dune", "year": 2021})

    assert tags["title"] == "Dune"
    assert tags["movie"] == "Dune"
    assert tags["date"] == "2021"
    assert tags["media_type"] == "9"
    assert "encoder" not in tags


def test_sanitize_metadata_value() -> None:
    assert sanitize_metadata_value('He said "hi" <A> & B\nx') == "He said 'hi' A and B x"
    assert sanitize_metadata_value(None) == ""
    assert sanitize_metadata_value(3) == "3"


def test_build_args_skip_empty_values(tmp_path) -> None:
    writer = MetadataWriterService(ffmpeg_path="ffmpeg")

    args = writer.build_args(tmp_path / "a.mkv", tmp_path / "a.tmp.1.mkv", {"title": "X", "comment": ""})

    assert args[:3] == ["ffmpeg", "-i", str(tmp_path / "a.mkv")]
    assert args[-1] == str(tmp_path / "a.tmp.1.mkv")
    assert ["-metadata", "title=X"] == args[args.index("-metadata"):args.index("-metadata") + 2]
    assert "comment=" not in args


def test_check_transcoder_reports_version(write_script) -> None:
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_VERSION))

    status = asyncio.run(writer.check_transcoder())

    assert status["available"] is True
    assert status["version"] == "6.1-test"


def test_check_transcoder_missing(tmp_path) -> None:
    status = asyncio.run(MetadataWriterService(ffmpeg_path=str(tmp_path / "none")).check_transcoder())

    assert status["available"] is False


def test_cleanup_temp_files(tmp_path) -> None:
    touch(tmp_path / "a.tmp.1700000000000.mkv")
    touch(tmp_path / "a.mkv")

    removed = MetadataWriterService().cleanup_temp_files(str(tmp_path))

    assert removed == [str(tmp_path / "a.tmp.1700000000000.mkv")]
    assert (tmp_path / "a.mkv").exists()


FFPROBE_OK = """cat <<'JSON'
{
  "format": {
    "format_name": "matroska,webm",
    "duration": "1312.5",
    "tags": {"TITLE": "Old Title", "SHOW": "Old Show", "season_number": "2", "comment": "  "}
  },
  "streams": [
    {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
    {"codec_type": "audio", "codec_name": "aac", "channels": 2}
  ]
}
JSON"""


def test_read_metadata_parses_ffprobe_json(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv")
    writer = MetadataWriterService(ffprobe_path=write_script("ffprobe", FFPROBE_OK))

    info = asyncio.run(writer.read_metadata(str(source)))

    assert info["tags"] == {"title": "Old Title", "show": "Old Show", "season_number": "2"}
    assert info["title"] == "Old Title"
    assert info["show"] == "Old Show"
    assert info["season"] == "2"
    assert info["comment"] is None
    assert info["video_codec"] == "h264"
    assert (info["width"], info["height"]) == (1920, 1080)
    assert info["audio_channels"] == 2


def test_read_metadata_failures_return_none(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv")
    failing = MetadataWriterService(ffprobe_path=write_script("ffprobe", "exit 1"))
    garbled = MetadataWriterService(ffprobe_path=write_script("ffprobe-garbled", "echo not json"))
    missing = MetadataWriterService(ffprobe_path=str(tmp_path / "none"))

    assert asyncio.run(failing.read_metadata(str(source))) is None
    assert asyncio.run(garbled.read_metadata(str(source))) is None
    assert asyncio.run(missing.read_metadata(str(source))) is None


def test_parse_container_info_without_format() -> None:
    assert parse_container_info({})["tags"] == {}


def test_staged_tags_rebuild_the_record(tmp_path) -> None:
    source = touch(tmp_path / "a.mkv")
    writer = MetadataWriterService()
    writer.stage(str(source), build_metadata_map(EPISODE), 0.9)

    record = writer.check_staged(str(source)).to_record()

    assert record["media_type"] == "tv"
    assert record["title"] == "Breaking Bad"
    assert record["episode_title"] == "Cat's in the Bag..."
    assert (record["season"], record["episode"], record["year"]) == (1, 2, 2008)
    assert record["source"] == "staged"
    assert record["confidence"] == 0.9


def test_season_zero_is_tagged() -> None:
    tags = build_metadata_map({**EPISODE, "season": 0, "episode": 1})

    assert tags["season_number"] == "0"
    assert tags["episode_sort"] == "1"


def test_unwritable_sidecar_is_a_failed_result(tmp_path, write_script) -> None:
    source = touch(tmp_path / "a.mkv", "original")
    (tmp_path / "a.mkv.metadata.json").mkdir()
    writer = MetadataWriterService(ffmpeg_path=write_script("ffmpeg", FFMPEG_OK))

    result = asyncio.run(writer.write_record(str(source), EPISODE))

    assert result.success is False
    assert result.error_kind == "os_error"
    assert source.read_text() == "original"
