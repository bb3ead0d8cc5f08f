from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import touch
from mediabot.config import settings
from mediabot.database import reset_engine
from mediabot.main import app
from mediabot.services.pipeline import reset_journal


@pytest.fixture
def client(tmp_path, monkeypatch, no_delay):
    monkeypatch.setattr(settings, "database_path", str(tmp_path / "mediabot.db"))
    monkeypatch.setattr(settings, "tmdb_api_key", "")
    monkeypatch.setattr(settings, "tvdb_api_key", "")
    reset_engine()
    reset_journal()
    with TestClient(app) as test_client:
        yield test_client
    reset_engine()
    reset_journal()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "healthy"}


def test_api_keys_are_masked(client) -> None:
    response = client.put("/api/settings", json={"tmdb_api_key": "secret", "create_backup": True})
    assert response.status_code == 200

    data = client.get("/api/settings").json()

    assert data["tmdb_api_key"] == "***"
    assert data["tmdb_api_key_set"] is True
    assert data["tvdb_api_key_set"] is False
    assert data["create_backup"] is True


def test_invalid_settings_are_rejected(client) -> None:
    assert client.put("/api/settings", json={"default_metadata_source": "imdb"}).status_code == 400
    assert client.put("/api/settings", json={"naming_template": "  "}).status_code == 400


def test_scan_lists_and_parses_media(client, tmp_path) -> None:
    touch(tmp_path / "lib" / "Show.Name.S01E02.720p.mkv")
    touch(tmp_path / "lib" / "readme.txt")

    data = client.post("/api/scan", json={"path": str(tmp_path / "lib"), "parse": True}).json()

    assert data["count"] == 1
    assert data["files"][0]["parsed"]["title"] == "Show Name"


def test_scan_missing_folder(client, tmp_path) -> None:
    assert client.post("/api/scan", json={"path": str(tmp_path / "nope")}).status_code == 404


def test_session_endpoints_need_a_preview(client) -> None:
    assert client.get("/api/rename/groups/next").status_code == 409


def test_preview_execute_and_undo(client, tmp_path) -> None:
    client.put("/api/settings", json={"write_metadata": False})
    release = tmp_path / "lib" / "Show.Name.S01E02.720p-GRP"
    source = touch(release / "Show.Name.S01E02.720p-GRP.mkv", "video")
    expected = tmp_path / "lib" / "Show Name" / "Season 1" / "Show Name - S01E02 - Episode 2.mkv"

    preview = client.post("/api/rename/preview", json={"files": [{"path": str(source)}]}).json()

    item = preview["previews"][0]
    assert item["operation"]["new_path"] == str(expected)
    assert item["confidence"] == 0.6
    assert item["band"] == "medium"
    assert item["operation"]["parent_folder_change"]["kind"] == "cleanup"
    assert preview["pending_groups"] == []

    batch = client.post("/api/rename/execute", json={}).json()

    assert batch["summary"]["successful"] == 1
    assert expected.read_text() == "video"
    assert not release.exists()

    history = client.get("/api/undo").json()
    assert history["stats"]["undoable"] == 1

    undo = client.post("/api/undo/last").json()

    assert undo["success"] is True
    assert source.read_text() == "video"
    assert not expected.exists()
    assert client.post("/api/undo/last").status_code == 409

    log = client.get("/api/scan/library-log").json()
    assert sorted(e["action_type"] for e in log["entries"]) == ["rename", "undo"]
    assert client.delete("/api/scan/library-log").json()["deleted"] == 2


def test_execute_explicit_operations(client, tmp_path) -> None:
    client.put("/api/settings", json={"write_metadata": False})
    source = touch(tmp_path / "a.mkv", "A")
    taken = touch(tmp_path / "taken.mkv", "T")

    batch = client.post("/api/rename/execute", json={"operations": [
        {"id": "1", "old_path": str(source), "new_path": str(tmp_path / "b.mkv")},
        {"id": "2", "old_path": str(tmp_path / "missing.mkv"), "new_path": str(tmp_path / "c.mkv")},
        {"id": "3", "old_path": str(tmp_path / "b.mkv"), "new_path": str(taken)},
    ]}).json()

    assert [r["success"] for r in batch["results"]] == [True, False, False]
    assert [r["error_kind"] for r in batch["results"][1:]] == ["source_missing", "destination_exists"]
    assert taken.read_text() == "T"


def test_unknown_undo_operation(client) -> None:
    assert client.post("/api/undo/does-not-exist").status_code == 404


def test_metadata_staging_endpoints(client, tmp_path) -> None:
    video = touch(tmp_path / "a.mkv")

    staged = client.post("/api/metadata/stage", json={
        "path": str(video),
        "record": {"media_type": "movie", "title": "Dune", "year": 2021, "confidence": 0.9},
    }).json()

    assert staged["staged"]["metadata"]["movie"] == "Dune"
    status = client.get("/api/metadata/staged", params={"path": str(video)}).json()
    assert status["has_staged"] is True
    assert status["applied"] is False

    missing = client.post("/api/metadata/apply", json={"paths": [str(tmp_path / "other.mkv")]}).json()
    assert missing["results"][0]["error"] == "No staged metadata"


def test_metadata_apply_is_logged(client, tmp_path) -> None:
    missing = tmp_path / "other.mkv"

    client.post("/api/metadata/apply", json={"paths": [str(missing)]})

    log = client.get("/api/scan/library-log", params={"action_type": "metadata_failed"}).json()
    assert log["total"] == 1
    assert log["entries"][0]["file_path"] == str(missing)
    assert log["entries"][0]["details"] == "No staged metadata"


def test_read_metadata_endpoint(client, tmp_path, monkeypatch, write_script) -> None:
    video = touch(tmp_path / "a.mkv")
    monkeypatch.setattr(settings, "ffprobe_path", write_script("ffprobe", "echo '{\"format\": {\"tags\": {\"title\": \"X\"}}}'"))

    data = client.get("/api/metadata/read", params={"path": str(video)}).json()

    assert data["metadata"]["title"] == "X"
    assert client.get("/api/metadata/read", params={"path": str(tmp_path / "nope.mkv")}).status_code == 404
