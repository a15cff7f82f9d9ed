"""Turn uploaded images into stored album entries.

Each image is uploaded twice: a full-size JPEG under ``<slug>/imgNNN.jpg``
and a 600px wide WebP preview under ``<slug>/thumb/imgNNN.webp``.
"""

import io
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

ALLOWED_MIMETYPES = {"image/jpeg", "image/png", "image/webp"}
MAX_FILE_SIZE = 50 * 1024 * 1024

FULL_FORMAT, FULL_EXT, FULL_MIME, FULL_QUALITY = "JPEG", "jpg", "image/jpeg", 95
THUMB_FORMAT, THUMB_EXT, THUMB_MIME, THUMB_QUALITY = "WEBP", "webp", "image/webp", 85
THUMB_WIDTH = 600

_SEQ = re.compile(r"/img(\d+)\.\w+$")


class ImageRejected(ValueError):
    pass


@dataclass
class Upload:
    filename: str
    data: bytes
    mimetype: str = ""


def check_upload(upload: Upload) -> None:
    if upload.mimetype not in ALLOWED_MIMETYPES:
        raise ImageRejected("Invalid file type. Only JPEG, PNG, and WebP are allowed.")
    if len(upload.data) > MAX_FILE_SIZE:
        raise ImageRejected(f"File too large: {upload.filename}")


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageRejected(f"Not a readable image: {e}") from e
    return img


def probe(data: bytes) -> Tuple[int, int]:
    return _open(data).size


def aspect_ratio(width: int, height: int) -> float:
    return round(width / height, 4)


def normalize(data: bytes) -> bytes:
    """Return JPEG bytes; JPEG input passes through untouched."""
    img = _open(data)
    if img.format == FULL_FORMAT:
        return data
    if img.mode != "RGB":
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, FULL_FORMAT, quality=FULL_QUALITY)
    return buf.getvalue()


def make_thumb(data: bytes) -> bytes:
    img = _open(data)
    w, h = img.size
    if w > THUMB_WIDTH:
        img = img.resize((THUMB_WIDTH, max(1, round(h * THUMB_WIDTH / w))), Image.LANCZOS)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    buf = io.BytesIO()
    img.save(buf, THUMB_FORMAT, quality=THUMB_QUALITY)
    return buf.getvalue()


def full_key(slug: str, seq: int) -> str:
    return f"{slug}/img{seq:03d}.{FULL_EXT}"


def thumb_key(slug: str, seq: int) -> str:
    return f"{slug}/thumb/img{seq:03d}.{THUMB_EXT}"


def next_sequence(images: List[dict]) -> int:
    """First sequence number not used by any image in the manifest."""
    used = [int(m.group(1)) for m in (_SEQ.search(img.get("url", "")) for img in images) if m]
    return max([len(images)] + [n + 1 for n in used])


def process_image(upload: Upload, slug: str, seq: int, gateway) -> dict:
    width, height = probe(upload.data)
    key = full_key(slug, seq)
    gateway.upload(key, normalize(upload.data), FULL_MIME)
    tkey = thumb_key(slug, seq)
    gateway.upload(tkey, make_thumb(upload.data), THUMB_MIME)
    logger.info("uploaded %s (%dx%d)", key, width, height)
    return {
        "url": gateway.public_url(key),
        "thumb": gateway.public_url(tkey),
        "aspectRatio": aspect_ratio(width, height),
        "width": width,
        "height": height,
    }


def ingest(uploads: List[Upload], slug: str, start_seq: int, gateway, executor=None) -> List[dict]:
    """Upload a batch; results keep the order of ``uploads``.

    Sequence numbers are fixed before any work starts, so the batch may run on
    an executor. Objects uploaded before a failure are left in the bucket.
    """
    jobs = [(u, start_seq + i) for i, u in enumerate(uploads)]
    if executor is None:
        return [process_image(u, slug, seq, gateway) for u, seq in jobs]
    futures = [executor.submit(process_image, u, slug, seq, gateway) for u, seq in jobs]
    try:
        return [ft.result() for ft in futures]
    except Exception:
        # jobs not yet started are dropped; ones already running still finish
        for ft in futures:
            ft.cancel()
        raise


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Preview album image conversion locally.')
    parser.add_argument('image', help='input image path')
    parser.add_argument('-o', '--out', default=None,
                        help='output folder (default: <image_dir>/.ingest)')
    parser.add_argument('-n', '--seq', type=int, default=0, help='sequence number (default 0)')
    args = parser.parse_args()

    out_dir = args.out or os.path.join(os.path.dirname(os.path.abspath(args.image)), '.ingest')
    os.makedirs(out_dir, exist_ok=True)
    with open(args.image, 'rb') as f:
        data = f.read()

    w, h = probe(data)
    full_path = os.path.join(out_dir, f"img{args.seq:03d}.{FULL_EXT}")
    thumb_path = os.path.join(out_dir, f"img{args.seq:03d}.thumb.{THUMB_EXT}")
    with open(full_path, 'wb') as f:
        f.write(normalize(data))
    with open(thumb_path, 'wb') as f:
        f.write(make_thumb(data))
    print(f"{w}x{h} aspectRatio={aspect_ratio(w, h)}")
    print(f"Saved {full_path} and {thumb_path}")
