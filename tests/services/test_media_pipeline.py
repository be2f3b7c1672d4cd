import httpx
import pytest

from genflow.models.generated_media import GeneratedMedia
from genflow.models.rate_limit_window import RateLimitWindow
from genflow.services.error_classifier import ErrorKind
from genflow.services.errors import StorageError
from genflow.services.generation_api import GenerationParams

pytestmark = pytest.mark.anyio


def image_handler(request):
    return httpx.Response(200, content=b"png-bytes", headers={"content-type": "image/png"})


async def test_generate_uploads_and_records_media(db, make_pipeline, uploader):
    pipeline = make_pipeline(image_handler)
    params = GenerationParams(prompt="a cat", seed=7, width=512, height=256)

    outcome = await pipeline.generate(owner_id="user_1", params=params, api_key="sk")

    assert outcome.success
    assert outcome.attempts_made == 1
    media = db.query(GeneratedMedia).one()
    assert media.id == outcome.media_id
    assert media.owner_id == "user_1"
    assert media.prompt == "a cat"
    assert media.seed == 7
    assert media.model == "flux"
    assert (media.width, media.height, media.aspect_ratio) == (512, 256, 2.0)
    assert media.content_type == "image/png"
    assert media.visibility == "public"
    assert media.storage_key.startswith("generated/user_1/")
    assert media.storage_key.endswith(".png")
    assert media.url == f"https://cdn.test/{media.storage_key}"
    assert uploader.uploads == [(media.storage_key, "image/png", len(b"png-bytes"))]


async def test_generate_consumes_rate_limit_slot(db, make_pipeline):
    pipeline = make_pipeline(image_handler)
    await pipeline.generate(owner_id="user_1", params=GenerationParams(prompt="a cat", seed=1), api_key="sk")

    window = db.query(RateLimitWindow).filter_by(key="generate:user_1").one()
    assert window.count == 1


async def test_private_media_is_unlisted_with_default_size(db, make_pipeline):
    pipeline = make_pipeline(image_handler)
    params = GenerationParams(prompt="a cat", seed=1, private=True)

    await pipeline.generate(owner_id="user_1", params=params, api_key="sk")

    media = db.query(GeneratedMedia).one()
    assert media.visibility == "unlisted"
    assert (media.width, media.height) == (1024, 1024)


async def test_api_failure_skips_upload(db, make_pipeline, uploader):
    pipeline = make_pipeline(lambda request: httpx.Response(401, text="bad key"))

    outcome = await pipeline.generate(owner_id="user_1", params=GenerationParams(prompt="x", seed=1), api_key="sk")

    assert not outcome.success
    assert outcome.error_kind == ErrorKind.AUTH_ERROR
    assert outcome.error == "HTTP 401: bad key"
    assert uploader.uploads == []
    assert db.query(GeneratedMedia).count() == 0


async def test_storage_failure_is_an_item_failure(db, make_pipeline):
    pipeline = make_pipeline(image_handler)

    def failing_upload(data, key, content_type):
        raise StorageError(key, "bucket unavailable")

    pipeline.uploader = failing_upload

    outcome = await pipeline.generate(owner_id="user_1", params=GenerationParams(prompt="x", seed=1), api_key="sk")

    assert not outcome.success
    assert outcome.error_kind == ErrorKind.STORAGE_ERROR
    assert "bucket unavailable" in outcome.error
    assert db.query(GeneratedMedia).count() == 0
