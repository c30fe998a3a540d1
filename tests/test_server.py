"""Tests for the REST API."""

import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from pdf_assembler.server import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id(client):
    response = client.post("/api/v1/sessions")
    assert response.status_code == 201
    return response.json()["session"]["id"]


def upload(client, session_id, files):
    return client.post(
        f"/api/v1/sessions/{session_id}/files",
        files=[("files", (name, data, "application/pdf")) for name, data in files],
    )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestUpload:
    def test_upload_creates_groups(self, client, session_id, make_pdf):
        response = upload(client, session_id, [("a.pdf", make_pdf(["A0", "A1"]))])
        assert response.status_code == 200
        body = response.json()
        assert body["successful"] == 1
        assert body["results"][0]["page_count"] == 2

        state = client.get(f"/api/v1/sessions/{session_id}").json()
        assert state["session"]["document_name"] == "a"
        assert state["has_unsaved_changes"] is False

    def test_upload_reports_unparseable_file(self, client, session_id, make_pdf):
        response = upload(
            client,
            session_id,
            [("notes.txt", b"hello"), ("b.pdf", make_pdf(["B0"]))],
        )
        body = response.json()
        assert body["successful"] == 1
        assert body["failed"] == 1
        assert body["results"][0]["file_name"] == "notes.txt"
        assert body["results"][0]["error_code"] == "corrupt_document"
        assert body["results"][1]["file_name"] == "b.pdf"

    def test_upload_accepts_pdf_with_leading_whitespace(self, client, session_id, make_pdf):
        response = upload(client, session_id, [("crlf.pdf", b"\r\n" + make_pdf(["C0"]))])
        body = response.json()
        assert body["successful"] == 1
        assert body["results"][0]["page_count"] == 1

    def test_upload_to_unknown_session(self, client, make_pdf):
        response = upload(client, "missing", [("a.pdf", make_pdf(["A0"]))])
        assert response.status_code == 404


class TestGroupEndpoints:
    def test_scenario_two_files_into_one_group(self, client, session_id, make_pdf, read_labels):
        upload(client, session_id, [("a.pdf", make_pdf(["A0", "A1"])), ("b.pdf", make_pdf(["B0"]))])
        groups = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"]
        group_a, group_b = groups
        a0, a1 = [p["id"] for p in group_a["pages"]]
        b0 = group_b["pages"][0]["id"]

        response = client.post(
            f"/api/v1/sessions/{session_id}/pages/{b0}/move",
            json={"to_group_id": group_a["id"]},
        )
        assert response.status_code == 200
        response = client.put(
            f"/api/v1/sessions/{session_id}/groups/{group_a['id']}/pages",
            json={"page_ids": [a1, b0, a0]},
        )
        assert response.status_code == 200
        client.delete(f"/api/v1/sessions/{session_id}/groups/{group_b['id']}")

        response = client.get(f"/api/v1/sessions/{session_id}/export")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert "a.pdf" in response.headers["content-disposition"]
        assert read_labels(response.content) == ["A1", "B0", "A0"]

    def test_add_page_out_of_range(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0"]))])
        group = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"][0]
        file_id = group["pages"][0]["file_id"]

        response = client.post(
            f"/api/v1/sessions/{session_id}/groups/{group['id']}/pages",
            json={"file_id": file_id, "page_index": 5},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "PAGE_OUT_OF_RANGE"

    def test_add_and_duplicate_page(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0", "A1"]))])
        group = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"][0]
        file_id = group["pages"][0]["file_id"]

        added = client.post(
            f"/api/v1/sessions/{session_id}/groups/{group['id']}/pages",
            json={"file_id": file_id, "page_index": 1, "position": 0},
        )
        assert added.status_code == 201
        duplicate = client.post(
            f"/api/v1/sessions/{session_id}/pages/{added.json()['page_id']}/duplicate"
        )
        assert duplicate.status_code == 201

        pages = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"][0]["pages"]
        assert [p["page_index"] for p in pages] == [1, 1, 0, 1]

    def test_rename_rejects_blank_name(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0"]))])
        group_id = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"][0]["id"]
        response = client.patch(
            f"/api/v1/sessions/{session_id}/groups/{group_id}", json={"name": "   "}
        )
        assert response.status_code == 400

    def test_unknown_group(self, client, session_id):
        response = client.delete(f"/api/v1/sessions/{session_id}/groups/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
        assert response.json()["message"] == "Group nope not found"

    def test_merge_and_split(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0", "A1"])), ("b.pdf", make_pdf(["B0"]))])
        groups = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"]

        merged = client.post(
            f"/api/v1/sessions/{session_id}/groups/merge",
            json={"group_ids": [g["id"] for g in groups], "name": "All"},
        ).json()["session"]["groups"]
        assert [g["name"] for g in merged] == ["All"]

        split = client.post(
            f"/api/v1/sessions/{session_id}/groups/{merged[0]['id']}/split", json={"at": 2}
        ).json()["session"]["groups"]
        assert [len(g["pages"]) for g in split] == [2, 1]


class TestPreviewEndpoint:
    def test_preview_png(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0"]))])
        file_id = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["files"][0]["id"]

        response = client.get(
            f"/api/v1/sessions/{session_id}/files/{file_id}/pages/0/preview",
            params={"wait": "true"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_preview_out_of_range(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0"]))])
        file_id = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["files"][0]["id"]
        response = client.get(f"/api/v1/sessions/{session_id}/files/{file_id}/pages/1/preview")
        assert response.status_code == 400

    def test_preview_unknown_file(self, client, session_id):
        response = client.get(f"/api/v1/sessions/{session_id}/files/nope/pages/0/preview")
        assert response.status_code == 404
        assert response.json()["code"] == "MISSING_SOURCE_FILE"


class TestExportEndpoint:
    def test_export_without_groups(self, client, session_id):
        response = client.get(f"/api/v1/sessions/{session_id}/export")
        assert response.status_code == 204

    def test_export_multiple_groups_as_zip(self, client, session_id, make_pdf, read_labels):
        upload(client, session_id, [("one.pdf", make_pdf(["O0"])), ("two.pdf", make_pdf(["T0"]))])
        response = client.get(f"/api/v1/sessions/{session_id}/export")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert "one.zip" in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            assert archive.namelist() == ["one.pdf", "two.pdf"]
            assert read_labels(archive.read("one.pdf")) == ["O0"]

    def test_strict_export_with_removed_file(self, client, session_id, make_pdf):
        body = upload(client, session_id, [("a.pdf", make_pdf(["A0"])), ("b.pdf", make_pdf(["B0"]))]).json()
        groups = client.get(f"/api/v1/sessions/{session_id}").json()["session"]["groups"]
        b_page = groups[1]["pages"][0]["id"]
        client.post(f"/api/v1/sessions/{session_id}/pages/{b_page}/move", json={"to_group_id": groups[0]["id"]})
        client.delete(f"/api/v1/sessions/{session_id}/groups/{groups[1]['id']}")
        client.delete(f"/api/v1/sessions/{session_id}/files/{body['results'][1]['file_id']}")

        lenient = client.get(f"/api/v1/sessions/{session_id}/export")
        assert lenient.status_code == 200
        strict = client.get(f"/api/v1/sessions/{session_id}/export", params={"strict": "true"})
        assert strict.status_code == 404
        assert strict.json()["code"] == "MISSING_SOURCE_FILE"


class TestSnapshotEndpoint:
    def test_snapshot_saved_after_mutation(self, client, session_id, make_pdf):
        upload(client, session_id, [("a.pdf", make_pdf(["A0"]))])
        snapshot = client.get(f"/api/v1/sessions/{session_id}/snapshot").json()
        assert snapshot["groups"][0]["name"] == "a"

    def test_deleted_session(self, client, session_id):
        assert client.delete(f"/api/v1/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/v1/sessions/{session_id}").status_code == 404
        assert client.get(f"/api/v1/sessions/{session_id}/snapshot").status_code == 404
