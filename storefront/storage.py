"""Product and avatar images on Cloudflare R2 (S3-compatible)."""
import logging
import os
import re
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from . import config

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
MAX_PRODUCT_IMAGE_BYTES = 5 * 1024 * 1024
MAX_AVATAR_BYTES = 2 * 1024 * 1024
MAX_GALLERY_IMAGES = 5

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")
_GALLERY_FILE = re.compile(r"^image-\d+\.[a-z]+$")


class StorageError(Exception):
    pass


class StorageConfigError(StorageError):
    pass


def is_configured() -> bool:
    return all(
        [config.CLOUDFLARE_ACCOUNT_ID, config.R2_ACCESS_KEY_ID, config.R2_SECRET_ACCESS_KEY, config.R2_BUCKET_NAME]
    )


def get_client():
    if not is_configured():
        raise StorageConfigError("R2 configuration missing")
    return boto3.client(
        "s3",
        endpoint_url=f"https://{config.CLOUDFLARE_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=config.R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


def public_url(key: str) -> str:
    if config.R2_BUCKET_URL:
        return f"{config.R2_BUCKET_URL}/{key}"
    return key


def product_prefix(slug: str) -> str:
    return f"products/{slug}/"


def safe_filename(filename: str) -> str:
    name = _UNSAFE_FILENAME.sub("-", os.path.basename(filename or "")).strip("-.")
    if not name:
        raise ValueError("Invalid filename")
    return name


def extension_for(filename: str, content_type: str) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    return ext or ALLOWED_IMAGE_TYPES.get(content_type, "jpg")


def validate_image(filename: str, content_type: Optional[str], size: int, max_bytes: int) -> None:
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValueError(f"Invalid file type for {filename}. Only JPEG, PNG, and WebP are allowed.")
    if size > max_bytes:
        raise ValueError(f"File {filename} is too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")


def upload_object(key: str, data: bytes, content_type: str, client=None) -> str:
    client = client or get_client()
    try:
        client.put_object(Bucket=config.R2_BUCKET_NAME, Key=key, Body=data, ContentType=content_type)
    except (ClientError, BotoCoreError) as e:
        raise StorageError(f"Failed to upload {key}: {e}") from e
    logger.info("Uploaded %s", key)
    return key


def delete_object(key: str, client=None) -> None:
    client = client or get_client()
    try:
        client.delete_object(Bucket=config.R2_BUCKET_NAME, Key=key)
    except (ClientError, BotoCoreError) as e:
        raise StorageError(f"Failed to delete {key}: {e}") from e
    logger.info("Deleted %s", key)


def list_keys(prefix: str, client=None) -> list[str]:
    """All keys under prefix, following continuation tokens."""
    client = client or get_client()
    keys: list[str] = []
    kwargs = {"Bucket": config.R2_BUCKET_NAME, "Prefix": prefix}
    while True:
        try:
            response = client.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        keys.extend(obj["Key"] for obj in response.get("Contents", []))
        if not response.get("IsTruncated"):
            break
        kwargs["ContinuationToken"] = response["NextContinuationToken"]
    return sorted(keys)


def upload_product_image(slug: str, filename: str, data: bytes, content_type: str) -> str:
    return upload_object(f"{product_prefix(slug)}{safe_filename(filename)}", data, content_type)


def upload_product_gallery(slug: str, files: Iterable[tuple[str, bytes, str]]) -> list[str]:
    """Replace the numbered gallery images (image-1.jpg, image-2.png, ...) of a product."""
    files = list(files)
    if len(files) > MAX_GALLERY_IMAGES:
        raise ValueError(f"Maximum {MAX_GALLERY_IMAGES} images allowed per product")

    client = get_client()
    prefix = product_prefix(slug)
    for key in list_keys(prefix, client=client):
        if _GALLERY_FILE.match(key[len(prefix):]):
            delete_object(key, client=client)

    keys = []
    for index, (filename, data, content_type) in enumerate(files, start=1):
        key = f"{prefix}image-{index}.{extension_for(filename, content_type)}"
        keys.append(upload_object(key, data, content_type, client=client))
    return keys


def delete_product_image(slug: str, filename: str) -> str:
    key = f"{product_prefix(slug)}{safe_filename(filename)}"
    delete_object(key)
    return key


def list_product_images(slug: str) -> list[str]:
    return [k for k in list_keys(product_prefix(slug)) if k.lower().endswith(IMAGE_EXTENSIONS)]


def move_product_images(old_slug: str, new_slug: str) -> dict:
    """Copy every object from products/<old>/ to products/<new>/ and delete the source.

    Never raises; the result reports how many objects moved and the first error.
    """
    if old_slug == new_slug:
        return {"success": True, "moved_count": 0}

    moved = 0
    try:
        client = get_client()
        old_prefix, new_prefix = product_prefix(old_slug), product_prefix(new_slug)
        for key in list_keys(old_prefix, client=client):
            new_key = new_prefix + key[len(old_prefix):]
            client.copy_object(
                Bucket=config.R2_BUCKET_NAME,
                CopySource={"Bucket": config.R2_BUCKET_NAME, "Key": key},
                Key=new_key,
            )
            client.delete_object(Bucket=config.R2_BUCKET_NAME, Key=key)
            moved += 1
            logger.info("Moved %s -> %s", key, new_key)
    except (StorageError, ClientError, BotoCoreError) as e:
        logger.error("Moving images from %s to %s stopped after %d objects: %s", old_slug, new_slug, moved, e)
        return {"success": False, "moved_count": moved, "error": str(e)}
    return {"success": True, "moved_count": moved}


def delete_product_images(slug: str) -> dict:
    deleted = 0
    try:
        client = get_client()
        for key in list_keys(product_prefix(slug), client=client):
            client.delete_object(Bucket=config.R2_BUCKET_NAME, Key=key)
            deleted += 1
    except (StorageError, ClientError, BotoCoreError) as e:
        logger.error("Deleting images of %s stopped after %d objects: %s", slug, deleted, e)
        return {"success": False, "deleted_count": deleted, "error": str(e)}
    return {"success": True, "deleted_count": deleted}


def upload_avatar(user_id: int, filename: str, data: bytes, content_type: str) -> str:
    ext = ALLOWED_IMAGE_TYPES.get(content_type) or extension_for(filename, content_type)
    key = f"users/{user_id}/avatar.{ext}"
    return upload_object(key, data, content_type)
