"""
Tests for single-file and ZIP downloads and the download ledger.
"""
import io
import os
import zipfile

import pytest
from fastapi.testclient import TestClient

from app.core.access import Principal
from app.core.storage import LocalStorage
from app.models import DownloadRecord, FileAsset, OperationLog
from app.services.archive import ArchiveBuilder
from app.services.audit import AuditLogger
from app.services.ledger import DownloadLedger


@pytest.fixture
def photos(upload, users) -> list[dict]:
    response = upload(
        users["customer"],
        users["merchant"],
        [
            ("one.jpg", b"first-image", "image/jpeg"),
            ("two.jpg", b"second-image", "image/jpeg"),
            ("pack.zip", b"inner-archive", "application/zip"),
        ],
    )
    assert response.status_code == 200
    return response.json()["files"]


def _ledger(db_session) -> list[DownloadRecord]:
    db_session.expire_all()
    return db_session.query(DownloadRecord).order_by(DownloadRecord.id).all()


def _remove_from_disk(settings, stored_name: str) -> None:
    os.remove(os.path.join(settings.UPLOAD_DIR, stored_name))


class TestSingleDownload:
    def test_streams_file_and_records_success(self, client: TestClient, users, auth_headers, db_session, photos):
        response = client.get(f"/api/merchant/photo/{photos[0]['id']}/download", headers=auth_headers(users["merchant"]))
        assert response.status_code == 200
        assert response.content == b"first-image"
        assert "attachment" in response.headers["content-disposition"]
        assert "one.jpg" in response.headers["content-disposition"]

        rows = _ledger(db_session)
        assert [(r.fileId, r.downloadType, r.status) for r in rows] == [(photos[0]["id"], "single", "success")]
        assert db_session.query(OperationLog).filter(OperationLog.operation == "download_photo").count() == 1

    def test_token_query_parameter(self, client: TestClient, users, auth_headers, photos):
        token = auth_headers(users["merchant"])["Authorization"].split(" ", 1)[1]
        response = client.get(f"/api/merchant/photo/{photos[0]['id']}/download?token={token}")
        assert response.status_code == 200

    def test_missing_on_disk(self, client: TestClient, users, auth_headers, db_session, settings, photos):
        _remove_from_disk(settings, photos[0]["storedName"])
        response = client.get(f"/api/merchant/photo/{photos[0]['id']}/download", headers=auth_headers(users["merchant"]))
        assert response.status_code == 404
        rows = _ledger(db_session)
        assert [(r.status, r.errorMessage) for r in rows] == [("failed", "文件不存在")]

    def test_other_merchant_sees_not_found(self, client: TestClient, users, auth_headers, db_session, photos):
        response = client.get(
            f"/api/merchant/photo/{photos[0]['id']}/download", headers=auth_headers(users["other_merchant"])
        )
        assert response.status_code == 404
        assert _ledger(db_session) == []

    def test_deleted_asset_is_not_downloadable(self, client: TestClient, users, auth_headers, photos):
        client.delete(f"/api/uploads/{photos[0]['id']}", headers=auth_headers(users["customer"]))
        response = client.get(f"/api/merchant/photo/{photos[0]['id']}/download", headers=auth_headers(users["merchant"]))
        assert response.status_code == 404


class TestArchiveDownload:
    def test_download_all(self, client: TestClient, users, auth_headers, db_session, photos):
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert "alice_photos_" in response.headers["content-disposition"]

        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["one.jpg", "pack.zip", "two.jpg"]
            assert zf.read("two.jpg") == b"second-image"

        rows = _ledger(db_session)
        assert len(rows) == 3
        assert {(r.downloadType, r.status) for r in rows} == {("batch", "success")}
        assert all(r.archivePath.startswith("alice_photos_") for r in rows)
        assert db_session.query(OperationLog).filter(OperationLog.operation == "batch_download").count() == 1

    def test_duplicate_names_get_suffix(self, client: TestClient, upload, users, auth_headers):
        upload(users["customer"], users["merchant"], [("same.jpg", b"a", "image/jpeg")])
        upload(users["customer"], users["merchant"], [("same.jpg", b"b", "image/jpeg")], allowDuplicates="true")
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["same (1).jpg", "same.jpg"]

    def test_partial_missing_files(self, client: TestClient, users, auth_headers, db_session, settings, photos):
        _remove_from_disk(settings, photos[1]["storedName"])
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        assert response.status_code == 200
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["one.jpg", "pack.zip"]

        outcomes = {r.fileId: r.status for r in _ledger(db_session)}
        assert outcomes == {photos[0]["id"]: "success", photos[1]["id"]: "failed", photos[2]["id"]: "success"}

    def test_all_missing_files(self, client: TestClient, users, auth_headers, db_session, settings, photos):
        for photo in photos:
            _remove_from_disk(settings, photo["storedName"])
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        assert response.status_code == 404
        rows = _ledger(db_session)
        assert len(rows) == 3
        assert {r.status for r in rows} == {"failed"}

    def test_nothing_to_download(self, client: TestClient, users, auth_headers):
        response = client.get(
            f"/api/merchant/customer/{users['other_customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        assert response.status_code == 404

    def test_deleted_assets_are_excluded(self, client: TestClient, users, auth_headers, photos):
        client.delete(f"/api/uploads/{photos[2]['id']}", headers=auth_headers(users["customer"]))
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["one.jpg", "two.jpg"]


    def test_files_vanishing_after_check(self, client: TestClient, users, auth_headers, db_session, settings, photos, monkeypatch):
        monkeypatch.setattr(LocalStorage, "exists", lambda self, stored_name: True)
        for photo in photos:
            _remove_from_disk(settings, photo["storedName"])

        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-all", headers=auth_headers(users["merchant"])
        )
        assert response.status_code == 404
        rows = _ledger(db_session)
        assert len(rows) == 3
        assert {r.status for r in rows} == {"failed"}
        assert db_session.query(OperationLog).filter(OperationLog.operation == "batch_download").count() == 0

    def test_stream_failure_marks_every_target_failed(self, users, db_session, session_factory, settings, photos, monkeypatch):
        original_write = zipfile._ZipWriteFile.write
        calls = []

        def failing_write(self, data):
            calls.append(len(data))
            if len(calls) == 2:
                raise OSError("disk full")
            return original_write(self, data)

        monkeypatch.setattr(zipfile._ZipWriteFile, "write", failing_write)
        builder = ArchiveBuilder(
            db_session,
            settings,
            LocalStorage(settings.UPLOAD_DIR),
            DownloadLedger(session_factory),
            AuditLogger(session_factory),
        )
        stream = builder.customer_archive(Principal.of(users["merchant"]), users["customer"].id)
        with pytest.raises(OSError):
            list(stream.chunks)

        rows = _ledger(db_session)
        assert sorted(r.fileId for r in rows) == sorted(p["id"] for p in photos)
        assert {(r.status, r.errorMessage) for r in rows} == {("failed", "disk full")}
        assert db_session.query(OperationLog).filter(OperationLog.operation == "batch_download").count() == 0


class TestSelectedDownload:
    def test_selected_ids(self, client: TestClient, users, auth_headers, db_session, photos):
        ids = f"{photos[0]['id']},{photos[2]['id']}"
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-selected?photoIds={ids}",
            headers=auth_headers(users["merchant"]),
        )
        assert response.status_code == 200
        assert "alice_selected_2photos_" in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["one.jpg", "pack.zip"]
        assert db_session.query(OperationLog).filter(OperationLog.operation == "batch_download_selected").count() == 1

    def test_repeated_parameters_and_junk(self, client: TestClient, users, auth_headers, photos):
        url = (
            f"/api/merchant/customer/{users['customer'].id}/download-selected"
            f"?photoIds={photos[0]['id']}&photoIds=abc&photoIds={photos[1]['id']}"
        )
        response = client.get(url, headers=auth_headers(users["merchant"]))
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert sorted(zf.namelist()) == ["one.jpg", "two.jpg"]

    def test_single_selection_skips_zip(self, client: TestClient, users, auth_headers, db_session, photos):
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-selected?photoIds={photos[1]['id']}",
            headers=auth_headers(users["merchant"]),
        )
        assert response.status_code == 200
        assert response.content == b"second-image"
        rows = _ledger(db_session)
        assert [(r.downloadType, r.status) for r in rows] == [("single", "success")]

    def test_foreign_ids_are_filtered(self, client: TestClient, upload, users, auth_headers, photos):
        other = upload(users["other_customer"], users["merchant"], [("x.jpg", b"x", "image/jpeg")]).json()["files"][0]
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-selected?photoIds={other['id']}",
            headers=auth_headers(users["merchant"]),
        )
        assert response.status_code == 404

    def test_empty_selection(self, client: TestClient, users, auth_headers, photos):
        response = client.get(
            f"/api/merchant/customer/{users['customer'].id}/download-selected?photoIds=abc",
            headers=auth_headers(users["merchant"]),
        )
        assert response.status_code == 400


class TestFileAccess:
    def test_owner_and_recipient_can_view(self, client: TestClient, users, auth_headers, photos):
        url = f"/uploads/{photos[0]['storedName']}"
        for key in ("customer", "merchant", "admin"):
            response = client.get(url, headers=auth_headers(users[key]))
            assert response.status_code == 200
            assert response.content == b"first-image"
            assert response.headers["content-disposition"].startswith("inline")

    def test_others_get_not_found(self, client: TestClient, users, auth_headers, photos):
        url = f"/uploads/{photos[0]['storedName']}"
        for key in ("other_customer", "other_merchant", "sub_admin"):
            assert client.get(url, headers=auth_headers(users[key])).status_code == 404

    def test_unknown_name(self, client: TestClient, users, auth_headers, photos):
        response = client.get("/uploads/nope.jpg", headers=auth_headers(users["admin"]))
        assert response.status_code == 404

    def test_query_token_is_not_accepted(self, client: TestClient, users, auth_headers, photos):
        token = auth_headers(users["customer"])["Authorization"].split(" ", 1)[1]
        response = client.get(f"/uploads/{photos[0]['storedName']}?token={token}")
        assert response.status_code == 401
