import uuid

from genflow.repositories.batch_job_repository import BatchJobRepository
from genflow.repositories.generated_media_repository import GeneratedMediaRepository

USER = "user_test123"


def make_batch(db, owner_id=USER, total=3):
    return BatchJobRepository.create(db, owner_id=owner_id, total_count=total, generation_params={"prompt": "a cat"})


def test_create_batch_queues_background_run(client, job_runner):
    response = client.post("/batches", json={"params": {"prompt": "a cat", "seed": 1}, "count": 5})

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    assert body["total_count"] == 5
    assert body["current_index"] == 0
    assert body["result_media_ids"] == []
    job_runner.run_batch.assert_called_once_with(uuid.UUID(body["id"]))


def test_create_batch_rejects_bad_count(client, job_runner):
    response = client.post("/batches", json={"params": {"prompt": "a cat"}, "count": 1001})

    assert response.status_code == 400
    assert "between 1 and 1000" in response.json()["detail"]
    job_runner.run_batch.assert_not_called()


def test_get_batch_is_owner_scoped(client, db):
    mine = make_batch(db)
    theirs = make_batch(db, owner_id="someone_else")

    assert client.get(f"/batches/{mine.id}").status_code == 200
    assert client.get(f"/batches/{theirs.id}").status_code == 404


def test_pause_resume_cancel_flow(client, db, job_runner):
    batch = make_batch(db)

    paused = client.post(f"/batches/{batch.id}/pause")
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"

    resumed = client.post(f"/batches/{batch.id}/resume")
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "processing"
    job_runner.run_batch.assert_called_once_with(batch.id)

    cancelled = client.post(f"/batches/{batch.id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_invalid_command_is_409(client, db):
    batch = make_batch(db)
    client.post(f"/batches/{batch.id}/cancel")

    response = client.post(f"/batches/{batch.id}/resume")

    assert response.status_code == 409


def test_command_on_unknown_batch_is_404(client):
    assert client.post(f"/batches/{uuid.uuid4()}/pause").status_code == 404


def test_list_and_active_batches(client, db):
    running = make_batch(db)
    finished = make_batch(db)
    client.post(f"/batches/{finished.id}/cancel")

    listed = client.get("/batches").json()
    assert {b["id"] for b in listed} == {str(running.id), str(finished.id)}

    active = client.get("/batches/active").json()
    assert [b["id"] for b in active] == [str(running.id)]


def test_batch_media(client, db):
    batch = make_batch(db)
    media = GeneratedMediaRepository.create(
        db,
        owner_id=USER,
        storage_key="generated/user_test123/1-ab.jpg",
        url="https://cdn.test/generated/user_test123/1-ab.jpg",
        content_type="image/jpeg",
        size_bytes=10,
        prompt="a cat",
        model="flux",
        generation_params={"prompt": "a cat"},
        seed=3,
        batch_job_id=batch.id,
    )
    batch.result_media_ids = [str(media.id)]
    db.commit()

    response = client.get(f"/batches/{batch.id}/media")

    assert response.status_code == 200
    assert [m["id"] for m in response.json()] == [str(media.id)]
    assert client.get(f"/batches/{uuid.uuid4()}/media").status_code == 404
