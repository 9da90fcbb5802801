import base64

import pytest

from caseledger_config import config


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


@pytest.fixture
def document(client, auth_headers, case):
    resp = client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "er_visit.txt",
        "fileType": "text/plain",
        "content": _b64(b"On 2025-03-10 the plaintiff was treated for neck injury. Diagnosis: whiplash."),
        "category": "medical",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["document"]


def test_upload_records_metadata(document):
    assert document["fileName"] == "er_visit.txt"
    assert document["category"] == "medical"
    assert document["fileSize"] > 0
    assert len(document["hashSha256"]) == 64
    assert document["publicUrl"] == f"/api/documents/download/{document['id']}"
    assert "storedName" not in document
    assert document["extractedText"].startswith("On 2025-03-10")


def test_upload_rejects_mime_type(client, auth_headers, case):
    resp = client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "run.exe", "fileType": "application/x-msdownload", "content": _b64(b"MZ"),
    })
    assert resp.status_code == 400


def test_upload_rejects_bad_base64(client, auth_headers, case):
    resp = client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "a.txt", "fileType": "text/plain", "content": "%%% not base64 %%%",
    })
    assert resp.status_code == 400


def test_upload_size_limit(client, auth_headers, case, monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 8)
    resp = client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "big.txt", "fileType": "text/plain", "content": _b64(b"x" * 9),
    })
    assert resp.status_code == 413


def test_upload_to_foreign_case(client, other_headers, case):
    resp = client.post(f"/api/documents/upload/{case['id']}", headers=other_headers, json={
        "fileName": "a.txt", "fileType": "text/plain", "content": _b64(b"hello"),
    })
    assert resp.status_code == 404


def test_download_returns_bytes(client, auth_headers, document):
    resp = client.get(f"/api/documents/download/{document['id']}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.content.startswith(b"On 2025-03-10")
    assert "er_visit.txt" in resp.headers["content-disposition"]


def test_download_foreign_document(client, other_headers, document):
    assert client.get(f"/api/documents/download/{document['id']}", headers=other_headers).status_code == 404


def test_list_and_filter(client, auth_headers, case, document):
    client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "photo.png", "fileType": "image/png", "content": _b64(b"\x89PNG"), "category": "evidence",
    })
    all_docs = client.get("/api/documents", headers=auth_headers).json()["documents"]
    assert len(all_docs) == 2
    medical = client.get("/api/documents", headers=auth_headers, params={"category": "medical"}).json()
    assert [d["id"] for d in medical["documents"]] == [document["id"]]
    found = client.get("/api/documents", headers=auth_headers, params={"search": "PHOTO"}).json()
    assert [d["fileName"] for d in found["documents"]] == ["photo.png"]
    by_case = client.get(f"/api/documents/case/{case['id']}", headers=auth_headers).json()
    assert len(by_case["documents"]) == 2


def test_update_document(client, auth_headers, document):
    resp = client.put(f"/api/documents/{document['id']}", headers=auth_headers,
                      json={"category": "evidence", "description": "ER notes"})
    assert resp.json()["document"]["category"] == "evidence"
    assert resp.json()["document"]["description"] == "ER notes"


def test_update_document_rejects_null_category(client, auth_headers, document):
    resp = client.put(f"/api/documents/{document['id']}", headers=auth_headers, json={"category": None})
    assert resp.status_code == 422


def test_analyze_document(client, auth_headers, document):
    resp = client.post(f"/api/documents/{document['id']}/analyze", headers=auth_headers)
    assert resp.status_code == 200
    analysis = resp.json()["analysis"]
    assert "2025-03-10" in analysis
    assert "plaintiff" in analysis
    assert resp.json()["document"]["aiAnalysis"] == analysis


def test_analyze_without_text(client, auth_headers, case):
    doc = client.post(f"/api/documents/upload/{case['id']}", headers=auth_headers, json={
        "fileName": "photo.png", "fileType": "image/png", "content": _b64(b"\x89PNG"),
    }).json()["document"]
    resp = client.post(f"/api/documents/{doc['id']}/analyze", headers=auth_headers)
    assert resp.status_code == 400


def test_delete_document_removes_file(client, auth_headers, store, document):
    assert len(list(store.upload_dir.iterdir())) == 1
    assert client.delete(f"/api/documents/{document['id']}", headers=auth_headers).status_code == 200
    assert list(store.upload_dir.iterdir()) == []
    assert client.get(f"/api/documents/download/{document['id']}", headers=auth_headers).status_code == 404


def test_delete_case_removes_files(client, auth_headers, store, case, document):
    client.delete(f"/api/cases/{case['id']}", headers=auth_headers)
    assert list(store.upload_dir.iterdir()) == []


def test_document_stats(client, auth_headers, document):
    stats = client.get("/api/documents/stats/overview", headers=auth_headers).json()
    assert stats["totalDocuments"] == 1
    assert stats["byCategory"] == {"medical": 1}
    assert stats["recentDocuments"][0]["fileName"] == "er_visit.txt"
