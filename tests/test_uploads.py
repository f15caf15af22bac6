"""
Tests for customer uploads, duplicate checks and upload listings.
"""
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.storage import LocalStorage
from app.models import FileAsset, OperationLog, Role, User, UserStatus
from app.services.asset_store import AssetStore
from main import app


def _stored_files(settings) -> list[str]:
    if not os.path.isdir(settings.UPLOAD_DIR):
        return []
    return [name for name in os.listdir(settings.UPLOAD_DIR) if not name.startswith(".")]


class TestAuthentication:
    def test_missing_token_is_rejected(self, client: TestClient, users):
        response = client.get("/api/uploads")
        assert response.status_code == 401

    def test_invalid_token_is_rejected(self, client: TestClient, users):
        response = client.get("/api/uploads", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_disabled_account_is_rejected(self, client: TestClient, db_session, users, auth_headers):
        disabled = User(username="carol", password="x", role=Role.CUSTOMER.value,
                        status=UserStatus.DISABLED.value, disableReason="欠费")
        db_session.add(disabled)
        db_session.commit()
        response = client.get("/api/uploads", headers=auth_headers(disabled))
        assert response.status_code == 403
        assert response.json()["detail"] == "账户已被禁用，原因：欠费"


class TestUpload:
    """Upload acceptance and rejection."""

    def test_upload_images_and_archive(self, upload, users, db_session, settings, jpeg_bytes):
        response = upload(
            users["customer"],
            users["merchant"],
            [("a.jpg", jpeg_bytes, "image/jpeg"), ("set.zip", b"PK\x03\x04zip", "application/zip")],
            remarks="加急",
        )
        assert response.status_code == 200
        data = response.json()
        assert data["merchant"] == "merchant"
        assert [f["fileType"] for f in data["files"]] == ["image", "archive"]
        assert len(_stored_files(settings)) == 2

        rows = db_session.query(FileAsset).order_by(FileAsset.id).all()
        assert [row.originalName for row in rows] == ["a.jpg", "set.zip"]
        assert all(row.remarks == "加急" and row.editCount == 0 for row in rows)
        assert all(row.status == "active" and row.processStatus == "received" for row in rows)
        assert db_session.query(OperationLog).filter(OperationLog.operation == "upload_files").count() == 1

    def test_extension_match_is_enough(self, upload, users):
        response = upload(users["customer"], users["merchant"], [("b.PNG", b"png", "application/octet-stream")])
        assert response.status_code == 200
        assert response.json()["files"][0]["fileType"] == "image"

    def test_merchant_cannot_upload(self, upload, users, jpeg_bytes):
        response = upload(users["merchant"], users["other_merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        assert response.status_code == 403

    def test_missing_merchant(self, client: TestClient, users, auth_headers, jpeg_bytes):
        response = client.post(
            "/api/upload",
            headers=auth_headers(users["customer"]),
            files=[("files", ("a.jpg", jpeg_bytes, "image/jpeg"))],
        )
        assert response.status_code == 400

    def test_target_must_be_a_merchant(self, upload, users, jpeg_bytes):
        response = upload(users["customer"], users["other_customer"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        assert response.status_code == 400

    def test_disabled_merchant(self, upload, users, settings, jpeg_bytes):
        response = upload(users["customer"], users["disabled_merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        assert response.status_code == 403
        assert _stored_files(settings) == []

    def test_too_many_files(self, upload, users, settings):
        files = [(f"{i}.jpg", b"x", "image/jpeg") for i in range(21)]
        response = upload(users["customer"], users["merchant"], files)
        assert response.status_code == 400
        assert _stored_files(settings) == []

    def test_disallowed_type_rejects_whole_batch(self, upload, users, db_session, settings, jpeg_bytes):
        response = upload(
            users["customer"],
            users["merchant"],
            [("ok.jpg", jpeg_bytes, "image/jpeg"), ("run.exe", b"MZ", "application/x-msdownload")],
        )
        assert response.status_code == 400
        assert response.json()["rejectedFiles"] == ["run.exe"]
        assert db_session.query(FileAsset).count() == 0
        assert _stored_files(settings) == []

    def test_image_size_cap_exempts_archives(self, upload, users, settings):
        small = settings.model_copy(update={"MAX_IMAGE_BATCH_BYTES": 100})
        app.dependency_overrides[get_settings] = lambda: small

        too_big = upload(users["customer"], users["merchant"], [("a.jpg", b"x" * 60, "image/jpeg"), ("b.jpg", b"x" * 60, "image/jpeg")])
        assert too_big.status_code == 400

        archive = upload(users["customer"], users["merchant"], [("a.jpg", b"x" * 60, "image/jpeg"), ("big.zip", b"x" * 500, "application/zip")])
        assert archive.status_code == 200

    def test_remarks_too_long(self, upload, users, jpeg_bytes):
        response = upload(users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")], remarks="x" * 501)
        assert response.status_code == 400


    def test_insert_failure_removes_written_files(self, upload, users, db_session, settings, jpeg_bytes, monkeypatch):
        def broken_insert(self, assets):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(AssetStore, "create_many", broken_insert)
        response = upload(
            users["customer"],
            users["merchant"],
            [("a.jpg", jpeg_bytes, "image/jpeg"), ("b.jpg", jpeg_bytes, "image/jpeg")],
        )
        assert response.status_code == 500
        assert db_session.query(FileAsset).count() == 0
        assert _stored_files(settings) == []
        assert db_session.query(OperationLog).count() == 0

    def test_write_failure_mid_batch_removes_earlier_files(self, upload, users, db_session, settings, jpeg_bytes, monkeypatch):
        original_save = LocalStorage.save_stream
        saved = []

        def flaky_save(self, stored_name, source):
            if saved:
                raise OSError("no space left on device")
            saved.append(stored_name)
            return original_save(self, stored_name, source)

        monkeypatch.setattr(LocalStorage, "save_stream", flaky_save)
        with pytest.raises(OSError):
            upload(
                users["customer"],
                users["merchant"],
                [("a.jpg", jpeg_bytes, "image/jpeg"), ("b.jpg", jpeg_bytes, "image/jpeg")],
            )
        assert len(saved) == 1
        assert db_session.query(FileAsset).count() == 0
        assert _stored_files(settings) == []


class TestDuplicates:
    def test_duplicate_upload_is_rejected_without_writes(self, upload, users, db_session, settings, jpeg_bytes):
        assert upload(users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")]).status_code == 200

        response = upload(
            users["customer"],
            users["merchant"],
            [("a.jpg", jpeg_bytes, "image/jpeg"), ("new.jpg", jpeg_bytes, "image/jpeg")],
        )
        assert response.status_code == 409
        assert response.json()["duplicateFiles"] == ["a.jpg"]
        assert db_session.query(FileAsset).count() == 1
        assert len(_stored_files(settings)) == 1

    def test_allow_duplicates_after_warning(self, upload, users, db_session, jpeg_bytes):
        upload(users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        response = upload(
            users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")], allowDuplicates="true"
        )
        assert response.status_code == 200
        stored = {row.storedName for row in db_session.query(FileAsset).all()}
        assert len(stored) == 2

    def test_same_name_to_another_merchant_is_fine(self, upload, users, jpeg_bytes):
        upload(users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        response = upload(users["customer"], users["other_merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        assert response.status_code == 200

    def test_preflight_check(self, client: TestClient, upload, users, auth_headers, db_session, jpeg_bytes):
        upload(users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg")])
        response = client.post(
            "/api/check-duplicate-files",
            headers=auth_headers(users["customer"]),
            json={"merchantId": users["merchant"].id, "fileNames": ["a.jpg", "b.jpg"]},
        )
        assert response.status_code == 200
        assert response.json() == {"duplicateFiles": ["a.jpg"]}
        assert db_session.query(FileAsset).count() == 1

    def test_preflight_requires_merchant(self, client: TestClient, users, auth_headers):
        response = client.post(
            "/api/check-duplicate-files",
            headers=auth_headers(users["customer"]),
            json={"fileNames": ["a.jpg"]},
        )
        assert response.status_code == 400


class TestListing:
    def test_active_merchants_only(self, client: TestClient, users, auth_headers):
        response = client.get("/api/merchants", headers=auth_headers(users["customer"]))
        assert response.status_code == 200
        assert [m["username"] for m in response.json()] == ["merchant", "merchant_2"]

    def test_my_uploads_are_scoped_and_paginated(self, client: TestClient, upload, users, auth_headers, jpeg_bytes):
        upload(users["customer"], users["merchant"], [(f"{i}.jpg", jpeg_bytes, "image/jpeg") for i in range(3)])
        upload(users["other_customer"], users["merchant"], [("theirs.jpg", jpeg_bytes, "image/jpeg")])

        response = client.get("/api/uploads?page=2&limit=2", headers=auth_headers(users["customer"]))
        assert response.status_code == 200
        data = response.json()
        assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
        assert len(data["files"]) == 1
        assert data["files"][0]["merchantName"] == "merchant"
        assert "storedPath" not in data["files"][0]

    def test_deleted_files_sort_last(self, client: TestClient, upload, users, auth_headers, jpeg_bytes):
        ids = [f["id"] for f in upload(
            users["customer"], users["merchant"], [("a.jpg", jpeg_bytes, "image/jpeg"), ("b.jpg", jpeg_bytes, "image/jpeg")]
        ).json()["files"]]
        headers = auth_headers(users["customer"])
        client.delete(f"/api/uploads/{ids[1]}", headers=headers)

        files = client.get("/api/uploads", headers=headers).json()["files"]
        assert [f["status"] for f in files] == ["active", "deleted"]

    def test_empty_listing(self, client: TestClient, users, auth_headers):
        response = client.get("/api/uploads", headers=auth_headers(users["customer"]))
        assert response.json() == {"files": [], "pagination": {"page": 1, "limit": 10, "total": 0, "pages": 0}}

    def test_custom_time_filter_requires_dates(self, client: TestClient, users, auth_headers):
        response = client.get("/api/uploads?timeFilter=custom", headers=auth_headers(users["customer"]))
        assert response.status_code == 400
