"""
Generation endpoint helpers: request parameters, seed handling and URL
construction for the Pollinations-style ``GET /image/{prompt}`` API.
"""

import os
import random
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

GENERATION_API_BASE_URL = os.getenv("GENERATION_API_BASE_URL", "https://gen.pollinations.ai")

# The endpoint rejects seeds above int32 max.
MAX_SEED = 2**31 - 1

DEFAULT_MODEL = "flux"
DEFAULT_DIMENSION = 1024
DEFAULT_QUALITY = "high"


class GenerationParams(BaseModel):
    """Parameters for one generation. Stored as JSON on job rows."""

    prompt: str = Field(..., min_length=1, max_length=4000)
    negative_prompt: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = Field(None, ge=64, le=4096)
    height: Optional[int] = Field(None, ge=64, le=4096)
    seed: Optional[int] = None
    # Batch-only: reuse ``seed`` verbatim for every item.
    lock_seed: bool = False
    enhance: Optional[bool] = None
    private: Optional[bool] = None
    safe: Optional[bool] = None
    reference_image: Optional[str] = None
    quality: Optional[str] = None
    # Video models
    duration: Optional[int] = Field(None, ge=1, le=60)
    audio: Optional[bool] = None
    aspect_ratio: Optional[str] = None
    last_frame_image: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "prompt": "a lighthouse on a cliff at dusk, oil painting",
                "model": "flux",
                "width": 1024,
                "height": 768,
                "enhance": True,
            }
        }


def random_seed(rng: Optional[random.Random] = None) -> int:
    """Uniform 31-bit seed."""
    rng = rng or random
    return rng.randrange(0, MAX_SEED + 1)


def normalize_seed(seed: Optional[int], rng: Optional[random.Random] = None) -> int:
    """Explicit non-negative seeds are kept (capped at MAX_SEED); anything else is randomized."""
    if seed is None or seed < 0:
        return random_seed(rng)
    return min(seed, MAX_SEED)


def normalize_params(params: GenerationParams, rng: Optional[random.Random] = None) -> GenerationParams:
    return params.model_copy(update={"seed": normalize_seed(params.seed, rng)})


def derive_item_params(
    template: GenerationParams,
    item_index: int,
    rng: Optional[random.Random] = None,
) -> GenerationParams:
    """
    Parameters for item ``item_index`` of a batch.

    Items get distinct seeds so a batch is not N copies of the same image:
    an explicit template seed is offset by the item index, no seed draws a
    fresh random one. ``lock_seed`` keeps the template seed for every item.
    """
    seed = template.seed
    if seed is not None and seed >= 0:
        if template.lock_seed:
            item_seed = min(seed, MAX_SEED)
        else:
            item_seed = (min(seed, MAX_SEED) + item_index) % (MAX_SEED + 1)
    else:
        item_seed = random_seed(rng)
    return template.model_copy(update={"seed": item_seed})


def build_generation_url(params: GenerationParams, base_url: str = GENERATION_API_BASE_URL) -> str:
    """
    Build the full generation URL. ``params.seed`` should already be
    normalized; negative seeds are omitted.
    """
    query = {}

    if params.negative_prompt and params.negative_prompt.strip():
        query["negative_prompt"] = params.negative_prompt.strip()
    if params.model:
        query["model"] = params.model
    if params.width:
        query["width"] = str(params.width)
    if params.height:
        query["height"] = str(params.height)
    if params.seed is not None and params.seed >= 0:
        query["seed"] = str(params.seed)

    query["quality"] = params.quality or DEFAULT_QUALITY

    if params.enhance:
        query["enhance"] = "true"
    if params.safe:
        query["safe"] = "true"
    if params.private:
        query["private"] = "true"
    if params.reference_image:
        query["image"] = params.reference_image

    if params.duration:
        query["duration"] = str(params.duration)
    if params.audio:
        query["audio"] = "true"
    if params.aspect_ratio:
        query["aspectRatio"] = params.aspect_ratio
    if params.last_frame_image:
        query["lastFrameImage"] = params.last_frame_image

    path = f"{base_url.rstrip('/')}/image/{quote(params.prompt, safe='')}"
    return str(httpx.URL(path, params=query))
