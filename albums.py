"""Album lifecycle: create, edit, add/remove/reorder images, delete.

Every read-modify-write of an album's manifest runs under a per-slug lock,
so two requests touching the same album are applied one after the other.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List

from b2_gateway import key_from_url
from content_store import ALBUM_NUMBERS, ContentStore, InvalidRequest, parse_tags, post_date, slugify, to_int
from image_ingest import Upload, check_upload, ingest, next_sequence

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_REQUEST = 100


class AlbumExists(InvalidRequest):
    pass


class AlbumNotFound(LookupError):
    pass


_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


@contextmanager
def album_lock(slug: str):
    with _locks_guard:
        lock = _locks.setdefault(slug, threading.Lock())
    with lock:
        yield


def _require(store: ContentStore, slug: str) -> dict:
    album = store.get_album(slug)
    if album is None:
        raise AlbumNotFound("Album not found")
    return album


def _check_uploads(uploads: List[Upload]) -> None:
    if len(uploads) > MAX_IMAGES_PER_REQUEST:
        raise InvalidRequest(f"At most {MAX_IMAGES_PER_REQUEST} images per request")
    for u in uploads:
        check_upload(u)


def _delete_remote(gateway, image: dict) -> None:
    """Remove both stored variants of an image; failures are only logged."""
    try:
        if image.get("url"):
            gateway.delete(key_from_url(image["url"], 2))
        if image.get("thumb"):
            gateway.delete(key_from_url(image["thumb"], 3))
    except Exception as e:
        logger.error("Error deleting from B2: %s", e)


def create_album(store: ContentStore, gateway, fields: dict, uploads: List[Upload], executor=None) -> dict:
    title = (fields.get("title") or "").strip()
    slug = slugify(title)
    if not slug:
        raise InvalidRequest("Title is required")
    album_date = post_date(fields.get("date"))
    _check_uploads(uploads)
    with album_lock(slug):
        if store.manifest_exists(slug):
            raise AlbumExists("Album with this name already exists")
        images = ingest(uploads, slug, 0, gateway, executor)
        store.write_manifest(slug, images)
        store.write_album_post(f"{album_date}-{slug}.md", {
            "slug": slug,
            "title": title,
            "developer": fields.get("developer"),
            "description": fields.get("description"),
            "date": album_date,
        })
    logger.info("created album %s with %d images", slug, len(images))
    return {"slug": slug, "images": images}


def update_album(store: ContentStore, slug: str, fields: dict) -> dict:
    with album_lock(slug):
        album = _require(store, slug)
        updated = dict(album)
        if fields.get("title"):
            updated["title"] = fields["title"]
        for key in ("description", "developer"):
            if fields.get(key) is not None:
                updated[key] = fields[key]
        if fields.get("tags") is not None:
            updated["tags"] = parse_tags(fields["tags"])
        for _, key, _ in ALBUM_NUMBERS:
            if fields.get(key) is not None:
                updated[key] = to_int(fields[key], album[key])

        post_file = album["postFile"]
        new_date = post_date(fields["date"]) if fields.get("date") else None
        if new_date and new_date != album["date"]:
            updated["date"] = new_date
            new_file = f"{new_date}-{slug}.md"
            store.rename_post(post_file, new_file)
            post_file = new_file
        store.write_album_post(post_file, updated)
    return updated


def add_images(store: ContentStore, gateway, slug: str, uploads: List[Upload], executor=None) -> int:
    _check_uploads(uploads)
    with album_lock(slug):
        album = _require(store, slug)
        images = list(album["images"])
        images.extend(ingest(uploads, slug, next_sequence(images), gateway, executor))
        store.write_manifest(slug, images)
    return len(images)


def delete_image(store: ContentStore, gateway, slug: str, index) -> int:
    with album_lock(slug):
        album = _require(store, slug)
        try:
            index = int(index)
        except (TypeError, ValueError):
            raise InvalidRequest("Invalid image index")
        images = album["images"]
        if index < 0 or index >= len(images):
            raise InvalidRequest("Invalid image index")
        _delete_remote(gateway, images[index])
        remaining = images[:index] + images[index + 1:]
        store.write_manifest(slug, remaining)
    return len(remaining)


def delete_album(store: ContentStore, gateway, slug: str) -> None:
    with album_lock(slug):
        album = _require(store, slug)
        for image in album["images"]:
            _delete_remote(gateway, image)
        store.remove_album_files(album)
    logger.info("deleted album %s", slug)


def reorder_images(store: ContentStore, slug: str, order) -> None:
    with album_lock(slug):
        album = _require(store, slug)
        images = album["images"]
        if not isinstance(order, list):
            raise InvalidRequest("Invalid order array")
        try:
            order = [int(i) for i in order]
        except (TypeError, ValueError):
            raise InvalidRequest("Invalid order array")
        if sorted(order) != list(range(len(images))):
            raise InvalidRequest("Order must list every image index exactly once")
        store.write_manifest(slug, [images[i] for i in order])


def save_album_order(store: ContentStore, order) -> None:
    if not isinstance(order, list):
        raise InvalidRequest("Invalid order array")
    store.save_order(order)
