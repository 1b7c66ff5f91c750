"""
Submission deletion tests

Deleting removes the row, its entries and the stored payload, and leaves
exactly one delete entry in the activity trail.
"""
import pytest


async def _upload(client, headers, project_id, make_zip):
    response = await client.post(
        f"/api/projects/{project_id}/submissions",
        files={"file": ("report.zip", make_zip({"a.py": "a = 1\n", "b.py": "b = 2\n"}), "application/zip")},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["submission"]["id"]


@pytest.mark.asyncio
async def test_owner_deletes_submission(client, student_headers, project, make_zip, upload_dir):
    submission_id = await _upload(client, student_headers, project.id, make_zip)
    assert len(list(upload_dir.iterdir())) == 1

    response = await client.delete(f"/api/submissions/{submission_id}", headers=student_headers)
    assert response.status_code == 200
    assert response.json()["submission_id"] == submission_id

    response = await client.get(f"/api/projects/{project.id}/submissions", headers=student_headers)
    assert response.json()["submissions"] == []

    response = await client.get(f"/api/submissions/{submission_id}", headers=student_headers)
    assert response.status_code == 404

    assert list(upload_dir.iterdir()) == []

    response = await client.get(
        f"/api/submissions/{submission_id}/activities", params={"type": "delete"}, headers=student_headers
    )
    activities = response.json()["activities"]
    assert len(activities) == 1
    assert activities[0]["type"] == "delete"
    assert activities[0]["subject_name"] == "report.zip"
    assert activities[0]["context"] == {"status": "Uploaded"}


@pytest.mark.asyncio
async def test_analyzed_submission_can_be_deleted(
    client, student_headers, tutor_headers, project, provider, make_zip
):
    submission_id = await _upload(client, student_headers, project.id, make_zip)
    await client.post(f"/api/submissions/{submission_id}/analyze", headers=tutor_headers)
    provider.complete("job-1", files={"a.py": {"bugs": 1}})
    await client.get(f"/api/submissions/{submission_id}/status", headers=tutor_headers)

    response = await client.delete(f"/api/submissions/{submission_id}", headers=tutor_headers)
    assert response.status_code == 200

    response = await client.get(f"/api/submissions/{submission_id}/activities", headers=tutor_headers)
    types = [a["type"] for a in response.json()["activities"]]
    assert types.count("delete") == 1
    assert types[-1] == "create"


@pytest.mark.asyncio
async def test_other_student_cannot_delete(client, student_headers, other_student_headers, project, make_zip):
    submission_id = await _upload(client, student_headers, project.id, make_zip)

    response = await client.delete(f"/api/submissions/{submission_id}", headers=other_student_headers)
    assert response.status_code == 403

    response = await client.get(f"/api/submissions/{submission_id}", headers=student_headers)
    assert response.status_code == 200

    response = await client.get(
        f"/api/submissions/{submission_id}/activities", params={"type": "delete"}, headers=student_headers
    )
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_delete_unknown_submission(client, tutor_headers):
    response = await client.delete("/api/submissions/777", headers=tutor_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_second_delete_is_not_found(client, student_headers, project, make_zip):
    submission_id = await _upload(client, student_headers, project.id, make_zip)

    await client.delete(f"/api/submissions/{submission_id}", headers=student_headers)
    response = await client.delete(f"/api/submissions/{submission_id}", headers=student_headers)

    assert response.status_code == 404
