"""Client for the image-generation provider behind POST /create."""

import os
import logging

import httpx
from dotenv import load_dotenv

from errors import ServiceUnavailable, UpstreamError

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
IMAGE_SIZE = os.getenv("IMAGE_SIZE", "512x512")

if not OPENAI_API_KEY:
    logger.error("OPENAI_API_KEY is not set. Image generation will be unavailable.")


async def generate_image(prompt: str) -> str:
    """
    Asks the provider for one image and returns its URL.
    Raises ServiceUnavailable when no API key is configured and UpstreamError on provider failures.
    """
    if not OPENAI_API_KEY:
        raise ServiceUnavailable("Image generation is not configured.")

    payload = {"prompt": prompt, "n": 1, "size": IMAGE_SIZE}
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}

    async with httpx.AsyncClient(base_url=OPENAI_BASE_URL, timeout=60.0) as client:
        try:
            response = await client.post("/images/generations", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(f"Image provider returned {exc.response.status_code}: {exc.response.text[:200]}")
            raise UpstreamError("Image provider rejected the request.")
        except httpx.RequestError as exc:
            logger.error(f"Image provider request failed: {exc}")
            raise UpstreamError("Image provider is unreachable.")
        except ValueError as exc:
            logger.error(f"Image provider returned invalid JSON: {exc}")
            raise UpstreamError("Image provider returned an invalid response.")

    try:
        return data["data"][0]["url"]
    except (KeyError, IndexError, TypeError):
        logger.error(f"Image provider response without URL: {str(data)[:200]}")
        raise UpstreamError("Image provider returned no image.")
