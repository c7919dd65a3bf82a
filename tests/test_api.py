import hashlib

from fastapi.testclient import TestClient
from sqlalchemy import update

from app.core.errors import IntegrityError, StorageError
from app.main import create_app
from app.models.file import FileRecord
from app.models.user import User
from app.routers.files import content_disposition
from app.services import content_store as content_store_module
from app.services import uploads as uploads_module
from helpers import upload

HELLO_MD5 = "5d41402abc4b2a76b9719d911017c592"


def stored_files(upload_dir):
    return sorted(p.name for p in upload_dir.iterdir()) if upload_dir.exists() else []


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/api/health").json()["status"] == "healthy"


def test_unknown_route(client):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json() == {"detail": "Route not found", "code": "route_not_found"}


def test_full_scenario(client, upload_dir):
    response = client.post(
        "/api/auth/register", json={"username": "alice", "email": "alice@x.com", "password": "pw1"}
    )
    assert response.status_code == 201, response.text
    assert response.json() == {"id": 1, "username": "alice", "email": "alice@x.com"}

    response = client.post(
        "/api/auth/register", json={"username": "alice", "email": "alice2@x.com", "password": "pw2"}
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Username already exists"

    response = client.post("/api/auth/login", json={"username": "alice", "password": "pw1"})
    assert response.status_code == 200
    assert response.json()["id"] == 1

    response = client.post("/api/auth/login", json={"username": "alice", "password": "wrong"})
    assert response.status_code == 401

    response = upload(client, 1, ("hello.txt", b"hello", "text/plain"))
    assert response.status_code == 201, response.text
    [descriptor] = response.json()
    assert descriptor["original_name"] == "hello.txt"
    assert descriptor["size"] == 5
    assert descriptor["mime_type"] == "text/plain"
    assert descriptor["content_hash"] == HELLO_MD5
    assert descriptor["storage_name"] != "hello.txt"
    assert stored_files(upload_dir) == [descriptor["storage_name"]]

    response = client.get("/api/users/1/files")
    assert response.status_code == 200
    assert response.json() == [descriptor]

    response = client.get(f"/api/files/{descriptor['storage_name']}")
    assert response.status_code == 200
    assert response.content == b"hello"
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["content-length"] == "5"
    assert 'filename="hello.txt"' in response.headers["content-disposition"]


def test_register_duplicate_email(client, registered_user):
    response = client.post(
        "/api/auth/register", json={"username": "bob", "email": "alice@x.com", "password": "pw"}
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Email already exists", "code": "email_taken"}


def test_register_ids_increase(client):
    ids = []
    for name in ("u1", "u2", "u3"):
        response = client.post(
            "/api/auth/register", json={"username": name, "email": f"{name}@x.com", "password": "pw"}
        )
        ids.append(response.json()["id"])

    assert ids == [1, 2, 3]


def test_register_missing_field(client):
    response = client.post("/api/auth/register", json={"username": "alice", "password": "pw"})

    assert response.status_code == 422


def test_register_blank_username(client):
    response = client.post(
        "/api/auth/register", json={"username": "   ", "email": "a@x.com", "password": "pw"}
    )

    assert response.status_code == 400


def test_login_unknown_user_matches_wrong_password(client, registered_user):
    unknown = client.post("/api/auth/login", json={"username": "nobody", "password": "pw1"})
    wrong = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {"detail": "Invalid credentials", "code": "invalid_credentials"}


def test_password_is_not_stored_in_plain(client, registered_user):
    store = client.app.state.metadata
    with store.session() as db:
        user = db.get(User, registered_user["id"])
    assert user.password_hash != "pw1"
    assert "pw1" not in user.password_hash


def test_upload_multiple_files(client, registered_user, upload_dir):
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
    response = upload(
        client,
        registered_user["id"],
        ("a.txt", b"first", "text/plain"),
        ("b.png", png, "image/png"),
    )

    assert response.status_code == 201, response.text
    descriptors = response.json()
    assert [d["original_name"] for d in descriptors] == ["a.txt", "b.png"]
    assert descriptors[1]["size"] == len(png)
    assert descriptors[1]["content_hash"] == hashlib.md5(png).hexdigest()
    for descriptor in descriptors:
        on_disk = (upload_dir / descriptor["storage_name"]).read_bytes()
        assert descriptor["size"] == len(on_disk)
        assert descriptor["content_hash"] == hashlib.md5(on_disk).hexdigest()


def test_upload_disallowed_type_stores_nothing(client, registered_user, upload_dir):
    response = upload(
        client,
        registered_user["id"],
        ("ok.txt", b"fine", "text/plain"),
        ("evil.exe", b"MZ", "application/octet-stream"),
    )

    assert response.status_code == 415
    assert response.json()["code"] == "unsupported_file_type"
    assert stored_files(upload_dir) == []
    assert client.get(f"/api/users/{registered_user['id']}/files").json() == []


def test_upload_extension_mime_mismatch(client, registered_user, upload_dir):
    response = upload(client, registered_user["id"], ("photo.png", b"data", "image/jpeg"))

    assert response.status_code == 415
    assert stored_files(upload_dir) == []


def test_upload_too_many_files_stores_nothing(client, registered_user, upload_dir):
    parts = [(f"f{i}.txt", b"x", "text/plain") for i in range(4)]

    response = upload(client, registered_user["id"], *parts)

    assert response.status_code == 400
    assert response.json()["code"] == "too_many_files"
    assert stored_files(upload_dir) == []


def test_upload_too_large(client, registered_user, upload_dir):
    response = upload(client, registered_user["id"], ("big.txt", b"x" * 2048, "text/plain"))

    assert response.status_code == 413
    assert stored_files(upload_dir) == []


def test_upload_without_files(client, registered_user):
    response = client.post("/api/files/upload", data={"user_id": str(registered_user["id"])})

    assert response.status_code == 400
    assert response.json()["code"] == "empty_upload"


def test_upload_unknown_user(client, upload_dir):
    response = upload(client, 42, ("hello.txt", b"hello", "text/plain"))

    assert response.status_code == 404
    assert response.json()["code"] == "user_not_found"
    assert stored_files(upload_dir) == []


def test_upload_missing_user_id(client, upload_dir):
    response = client.post("/api/files/upload", files=[("files", ("hello.txt", b"hello", "text/plain"))])

    assert response.status_code == 400
    assert response.json()["code"] == "missing_user_id"
    assert stored_files(upload_dir) == []


def test_metadata_failure_records_nothing_and_leaves_orphans(client, registered_user, upload_dir, monkeypatch):
    async def broken_create_files(rows):
        raise StorageError("database is locked")

    monkeypatch.setattr(client.app.state.metadata, "create_files", broken_create_files)

    response = upload(
        client,
        registered_user["id"],
        ("a.txt", b"first", "text/plain"),
        ("b.txt", b"second", "text/plain"),
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "storage_error"}
    assert client.get(f"/api/users/{registered_user['id']}/files").json() == []
    # known gap: the bytes stay behind without a record
    assert len(stored_files(upload_dir)) == 2


def test_second_insert_failing_records_nothing(client, registered_user, upload_dir, monkeypatch):
    taken = upload(client, registered_user["id"], ("taken.txt", b"old", "text/plain")).json()[0]
    # free the name on disk so only the database sees the clash
    (upload_dir / taken["storage_name"]).unlink()
    names = iter(["files-1-new.txt", taken["storage_name"]])
    monkeypatch.setattr(content_store_module, "generate_storage_name", lambda field, original: next(names))

    response = upload(
        client,
        registered_user["id"],
        ("a.txt", b"first", "text/plain"),
        ("b.txt", b"second", "text/plain"),
    )

    assert response.status_code == 409
    listed = client.get(f"/api/users/{registered_user['id']}/files").json()
    assert [f["original_name"] for f in listed] == ["taken.txt"]


def test_hash_failure_fails_request_without_records(client, registered_user, monkeypatch):
    real_hash = uploads_module.hash_stored_file
    calls = []

    async def hash_failing_on_second(path):
        calls.append(path)
        if len(calls) == 2:
            raise IntegrityError(f"Could not hash stored file {path.name}")
        return await real_hash(path)

    monkeypatch.setattr(uploads_module, "hash_stored_file", hash_failing_on_second)

    response = upload(
        client,
        registered_user["id"],
        ("a.txt", b"first", "text/plain"),
        ("b.txt", b"second", "text/plain"),
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "integrity_error"}
    assert client.get(f"/api/users/{registered_user['id']}/files").json() == []


def test_list_files_newest_first(client, registered_user):
    first = upload(client, registered_user["id"], ("one.txt", b"1", "text/plain")).json()[0]
    second = upload(client, registered_user["id"], ("two.txt", b"2", "text/plain")).json()[0]

    listed = client.get(f"/api/users/{registered_user['id']}/files").json()

    assert [f["id"] for f in listed] == [second["id"], first["id"]]


def test_list_files_unknown_user(client):
    response = client.get("/api/users/42/files")

    assert response.status_code == 404


def test_download_unknown_vs_missing_content(client, registered_user, upload_dir):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]
    (upload_dir / descriptor["storage_name"]).unlink()

    missing = client.get(f"/api/files/{descriptor['storage_name']}")
    unknown = client.get("/api/files/files-0-000000000000.txt")

    assert missing.status_code == 404
    assert unknown.status_code == 404
    assert missing.json()["code"] == "content_missing"
    assert unknown.json()["code"] == "not_found"


def test_download_pdf_headers(client, registered_user):
    descriptor = upload(client, registered_user["id"], ("report.pdf", b"%PDF-1.4", "application/pdf")).json()[0]

    response = client.get(f"/api/files/{descriptor['storage_name']}")

    assert response.status_code == 200
    assert response.content == b"%PDF-1.4"
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'attachment; filename="report.pdf"'


def test_download_length_follows_bytes_on_disk(client, registered_user, upload_dir):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]
    (upload_dir / descriptor["storage_name"]).write_bytes(b"hello, grown file!")

    response = client.get(f"/api/files/{descriptor['storage_name']}")

    assert response.status_code == 200
    assert response.headers["content-length"] == "18"
    assert response.content == b"hello, grown file!"


def test_download_ignores_recorded_path(client, registered_user):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]
    with client.app.state.metadata.session() as db:
        db.execute(
            update(FileRecord)
            .where(FileRecord.storage_name == descriptor["storage_name"])
            .values(storage_path="/nonexistent/elsewhere.txt")
        )
        db.commit()

    response = client.get(f"/api/files/{descriptor['storage_name']}")

    assert response.status_code == 200
    assert response.content == b"hello"


def test_download_open_failure_is_generic_server_error(client, registered_user, monkeypatch):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]

    def failing_open(path, mode="r", *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(content_store_module, "open", failing_open, raising=False)

    response = client.get(f"/api/files/{descriptor['storage_name']}")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "storage_error"}


class FailingHandle:
    closed = False

    def read(self, size=-1):
        raise OSError(5, "Input/output error")

    def close(self):
        self.closed = True


def test_download_read_failure_before_headers(client, registered_user, monkeypatch):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]
    handle = FailingHandle()
    monkeypatch.setattr(client.app.state.content_store, "open_stored", lambda storage_name: (handle, 5))

    response = client.get(f"/api/files/{descriptor['storage_name']}")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "storage_error"}
    assert handle.closed


def test_content_disposition_non_ascii_name():
    header = content_disposition("résumé.pdf")

    assert header.startswith('attachment; filename="rsum.pdf"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in header


def test_verify_detects_tampering(client, registered_user, upload_dir):
    descriptor = upload(client, registered_user["id"], ("hello.txt", b"hello", "text/plain")).json()[0]

    ok = client.get(f"/api/files/{descriptor['storage_name']}/verify").json()
    assert ok["verified"] is True
    assert ok["actual_hash"] == HELLO_MD5

    (upload_dir / descriptor["storage_name"]).write_bytes(b"HELLO")
    tampered = client.get(f"/api/files/{descriptor['storage_name']}/verify").json()
    assert tampered["verified"] is False
    assert tampered["recorded_hash"] == HELLO_MD5


def test_upload_with_hashing_disabled(settings):
    settings = settings.model_copy(update={"hash_uploads": False})
    with TestClient(create_app(settings)) as client:
        client.post("/api/auth/register", json={"username": "alice", "email": "alice@x.com", "password": "pw1"})

        descriptor = upload(client, 1, ("hello.txt", b"hello", "text/plain")).json()[0]
        verification = client.get(f"/api/files/{descriptor['storage_name']}/verify").json()

    assert descriptor["content_hash"] is None
    assert verification["verified"] is None
    assert verification["actual_hash"] == HELLO_MD5
