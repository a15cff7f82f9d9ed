"""Flat-file content access for the site: posts, album manifests, ordering.

Albums are backed by two files sharing a slug: a Markdown post under
``_posts/`` carrying the metadata as front matter, and a JSON manifest under
``_data/virtual-photography/`` listing the uploaded images.
"""

import json
import logging
import os
import re
import unicodedata
from datetime import date, datetime
from typing import List, Optional

import frontmatter
import yaml

logger = logging.getLogger(__name__)

ALBUM_CATEGORY = "virtual-photography"
DEFAULT_DESCRIPTION = "Virtual Photography"
ORDER_FILE = "_album-order.json"

# front matter key -> (record key, default)
ALBUM_NUMBERS = [
    ("card-image", "cardImage", 0),
    ("card-offset", "cardOffset", 50),
    ("card-offset-x", "cardOffsetX", 50),
    ("card-zoom", "cardZoom", 100),
    ("banner-image", "bannerImage", 0),
    ("banner-offset", "bannerOffset", 50),
    ("banner-offset-x", "bannerOffsetX", 50),
    ("banner-zoom", "bannerZoom", 100),
]

LEGACY_IMAGE_KEYS = {
    "url": "imageFull-link",
    "thumb": "thumbnail-link",
    "aspectRatio": "aspect-ratio",
}

_STRIP = re.compile(r"[*+~.()'\"!:@]")
_POST_NAME = re.compile(r"^(\d{4}-\d{2}-\d{2})-(.+)\.md$")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class InvalidRequest(ValueError):
    pass


# ------------------ helpers ------------------

def slugify(title: str) -> str:
    text = _STRIP.sub("", title or "")
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return text.strip("-")


def valid_name(name: str) -> bool:
    """Return True if name is usable as a single file name segment."""
    return bool(name) and ".." not in name and bool(_SAFE_NAME.fullmatch(name))


def today() -> str:
    return date.today().isoformat()


def post_date(value) -> str:
    """Return value as a YYYY-MM-DD post date, or today's date if empty."""
    if value is None or value == "":
        return today()
    text = str(value)
    try:
        parsed = date.fromisoformat(text)
    except ValueError:
        parsed = None
    # fromisoformat also takes 20240401 on newer interpreters
    if parsed is None or len(text) != 10:
        raise InvalidRequest("Date must be YYYY-MM-DD")
    return text


def to_int(value, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def date_str(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value) if value else ""


def parse_tags(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(",") if t.strip()]


def _date_ordinal(value: str) -> int:
    try:
        return datetime.fromisoformat(value[:10]).toordinal()
    except (TypeError, ValueError):
        return 0


def normalize_image(raw: dict) -> dict:
    """Migrate one manifest entry to the current field names."""
    def pick(key, default):
        if raw.get(key) not in (None, ""):
            return raw[key]
        legacy = LEGACY_IMAGE_KEYS.get(key)
        if legacy and raw.get(legacy) not in (None, ""):
            return raw[legacy]
        return default

    try:
        ratio = float(pick("aspectRatio", 1.5))
    except (TypeError, ValueError):
        ratio = 1.5
    return {
        "url": pick("url", ""),
        "thumb": pick("thumb", ""),
        "aspectRatio": ratio,
        "width": to_int(raw.get("width"), 0),
        "height": to_int(raw.get("height"), 0),
    }


def album_front_matter(album: dict) -> dict:
    meta = {
        "layout": "post",
        "date": album.get("date") or today(),
        "title": album.get("title") or "",
        "description": album.get("description") or DEFAULT_DESCRIPTION,
        "developer": album.get("developer") or "",
        "categories": [ALBUM_CATEGORY],
        "tags": list(album.get("tags") or []),
        "slug": album["slug"],
    }
    for fm_key, key, default in ALBUM_NUMBERS:
        meta[fm_key] = to_int(album.get(key), default)
    return meta


def _read_json(path: str, default):
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return default if data is None else data


def _write_json(path: str, data) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _remove(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


# ------------------ store ------------------

class ContentStore:
    """Reads and writes the site's content tree rooted at ``root``."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        self.posts_dir = os.path.join(self.root, "_posts")
        self.projects_dir = os.path.join(self.root, "_projects")
        self.data_dir = os.path.join(self.root, "_data", "virtual-photography")
        self.order_path = os.path.join(self.data_dir, ORDER_FILE)
        self.landing_path = os.path.join(self.root, "_data", "landing.json")
        self.config_path = os.path.join(self.root, "_config.yml")
        self.about_path = os.path.join(self.root, "pages", "about.md")

    # ---------- posts ----------

    def _post_names(self) -> List[str]:
        if not os.path.isdir(self.posts_dir):
            return []
        return sorted(n for n in os.listdir(self.posts_dir) if n.endswith(".md"))

    @staticmethod
    def _slug_of(filename: str) -> str:
        m = _POST_NAME.match(filename)
        return m.group(2) if m else filename[:-3]

    def find_post_file(self, slug: str, names: Optional[List[str]] = None) -> Optional[str]:
        for name in self._post_names() if names is None else names:
            if self._slug_of(name) == slug:
                return name
        return None

    def read_post(self, filename: str) -> frontmatter.Post:
        return frontmatter.load(os.path.join(self.posts_dir, filename))

    def write_post(self, filename: str, body: str, meta: dict) -> str:
        os.makedirs(self.posts_dir, exist_ok=True)
        path = os.path.join(self.posts_dir, filename)
        post = frontmatter.Post(body or "", **meta)
        with open(path, "w", encoding="utf-8") as f:
            f.write(frontmatter.dumps(post) + "\n")
        return path

    def write_album_post(self, filename: str, album: dict) -> str:
        return self.write_post(filename, "", album_front_matter(album))

    def rename_post(self, old: str, new: str) -> bool:
        """Rename a post file; a missing source is not an error."""
        if old == new:
            return False
        try:
            os.rename(os.path.join(self.posts_dir, old), os.path.join(self.posts_dir, new))
            return True
        except FileNotFoundError:
            logger.debug("post %s already gone, nothing to rename", old)
            return False

    # ---------- manifests ----------

    def manifest_path(self, slug: str) -> str:
        return os.path.join(self.data_dir, f"{slug}.json")

    def manifest_exists(self, slug: str) -> bool:
        return os.path.isfile(self.manifest_path(slug))

    def _manifest_names(self) -> List[str]:
        if not os.path.isdir(self.data_dir):
            return []
        return sorted(
            n for n in os.listdir(self.data_dir)
            if n.endswith(".json") and not n.startswith("_")
        )

    def read_manifest(self, slug: str) -> List[dict]:
        try:
            raw = _read_json(self.manifest_path(slug), [])
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.error("Error reading %s.json: %s", slug, e)
            return []
        if not isinstance(raw, list):
            logger.error("Manifest %s.json is not a list", slug)
            return []
        return [normalize_image(img) for img in raw if isinstance(img, dict)]

    def write_manifest(self, slug: str, images: List[dict]) -> None:
        _write_json(self.manifest_path(slug), [normalize_image(img) for img in images])

    # ---------- ordering ledger ----------

    def get_order(self) -> List[str]:
        try:
            order = _read_json(self.order_path, [])
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.error("Error reading album order: %s", e)
            return []
        if not isinstance(order, list):
            return []
        return [slug for slug in order if slug is not None]

    def save_order(self, order: List[str]) -> None:
        _write_json(self.order_path, list(order))

    # ---------- albums ----------

    def _album_record(self, slug: str, post_file: str) -> dict:
        meta = self.read_post(post_file).metadata
        images = self.read_manifest(slug)
        album = {
            "slug": slug,
            "title": meta.get("title") or slug,
            "description": meta.get("description") or DEFAULT_DESCRIPTION,
            "developer": meta.get("developer") or "",
            "date": date_str(meta.get("date")),
            "tags": parse_tags(meta.get("tags")),
        }
        for fm_key, key, default in ALBUM_NUMBERS:
            album[key] = to_int(meta.get(fm_key), default)
        album.update({
            "images": images,
            "imageCount": len(images),
            "postFile": post_file,
            "jsonFile": f"{slug}.json",
        })
        return album

    def list_albums(self) -> List[dict]:
        posts = self._post_names()
        albums = []
        for name in self._manifest_names():
            slug = name[:-5]
            post_file = self.find_post_file(slug, posts)
            if not post_file:
                continue
            try:
                albums.append(self._album_record(slug, post_file))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.error("Error reading album %s: %s", slug, e)

        rank = {}
        for i, slug in enumerate(self.get_order()):
            rank.setdefault(slug, i)

        def sort_key(album):
            if album["slug"] in rank:
                return (0, rank[album["slug"]])
            return (1, -_date_ordinal(album["date"]))

        albums.sort(key=sort_key)
        return albums

    def get_album(self, slug: str) -> Optional[dict]:
        for album in self.list_albums():
            if album["slug"] == slug:
                return album
        return None

    def remove_album_files(self, album: dict) -> None:
        _remove(os.path.join(self.posts_dir, album["postFile"]))
        _remove(os.path.join(self.data_dir, album["jsonFile"]))

    # ---------- blog ----------

    def list_blog_posts(self) -> List[dict]:
        posts = []
        for name in self._post_names():
            try:
                post = self.read_post(name)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.error("Error reading post %s: %s", name, e)
                continue
            data = post.metadata
            categories = parse_tags(data.get("categories"))
            if ALBUM_CATEGORY in categories:
                continue
            posts.append({
                "filename": name,
                "fileSlug": name[:-3],
                "title": data.get("title") or "Untitled",
                "date": date_str(data.get("date")),
                "author": data.get("author"),
                "categories": categories,
                "tags": parse_tags(data.get("tags")),
                "image": data.get("image"),
                "excerpt": data.get("excerpt"),
                "content": post.content,
            })
        posts.sort(key=lambda p: _date_ordinal(p["date"]), reverse=True)
        return posts

    def save_blog_post(self, data: dict, original: Optional[str] = None) -> str:
        slug = slugify(data.get("title") or "")
        if not slug:
            raise InvalidRequest("Title is required")
        when = post_date(data.get("date"))
        filename = f"{when}-{slug}.md"
        meta = {
            "layout": "post",
            "title": data.get("title"),
            "date": when,
            "author": data.get("author") or "",
            "categories": parse_tags(data.get("categories")) or ["blog"],
            "tags": parse_tags(data.get("tags")),
            "image": data.get("image") or "",
            "excerpt": data.get("excerpt") or "",
        }
        if original and f"{original}.md" != filename:
            _remove(os.path.join(self.posts_dir, f"{original}.md"))
        self.write_post(filename, data.get("content") or "", meta)
        return filename

    def delete_post(self, file_slug: str) -> None:
        os.remove(os.path.join(self.posts_dir, f"{file_slug}.md"))

    # ---------- projects ----------

    def list_projects(self) -> List[dict]:
        if not os.path.isdir(self.projects_dir):
            return []
        projects = []
        for name in os.listdir(self.projects_dir):
            if not name.endswith(".md"):
                continue
            try:
                post = frontmatter.load(os.path.join(self.projects_dir, name))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.error("Error reading project %s: %s", name, e)
                continue
            data = post.metadata
            projects.append({
                "filename": name,
                "fileSlug": name[:-3],
                "name": data.get("name") or "Untitled",
                "tools": data.get("tools") or [],
                "image": data.get("image"),
                "description": data.get("description"),
                "external_url": data.get("external_url"),
                "content": post.content,
            })
        # natural order so 2-foo sorts before 10-bar
        projects.sort(key=lambda p: [
            int(part) if part.isdigit() else part.lower()
            for part in re.split(r"(\d+)", p["filename"])
        ])
        return projects

    def save_project(self, data: dict, original: Optional[str] = None) -> str:
        file_slug = original or slugify(data.get("name") or "")
        if not file_slug:
            raise InvalidRequest("Name is required")
        meta = {
            "name": data.get("name"),
            "tools": parse_tags(data.get("tools")),
            "image": data.get("image") or "",
            "description": data.get("description") or "",
        }
        if data.get("external_url"):
            meta["external_url"] = data["external_url"]
        os.makedirs(self.projects_dir, exist_ok=True)
        post = frontmatter.Post(data.get("content") or "", **meta)
        with open(os.path.join(self.projects_dir, f"{file_slug}.md"), "w", encoding="utf-8") as f:
            f.write(frontmatter.dumps(post) + "\n")
        return file_slug

    def delete_project(self, file_slug: str) -> None:
        os.remove(os.path.join(self.projects_dir, f"{file_slug}.md"))

    # ---------- about / landing ----------

    def read_about(self) -> dict:
        post = frontmatter.load(self.about_path)
        return {"content": post.content, "frontMatter": post.metadata}

    def save_about(self, data: dict) -> None:
        meta = {
            "layout": data.get("layout") or "about",
            "title": data.get("title") or "About",
            "permalink": data.get("permalink") or "/about/",
            "weight": to_int(data.get("weight"), 2),
        }
        os.makedirs(os.path.dirname(self.about_path), exist_ok=True)
        post = frontmatter.Post(data.get("content") or "", **meta)
        with open(self.about_path, "w", encoding="utf-8") as f:
            f.write(frontmatter.dumps(post) + "\n")

    def read_landing(self) -> dict:
        try:
            return _read_json(self.landing_path, {})
        except (OSError, ValueError):
            return {"title": "", "subtitle": "", "text": "", "buttons": []}

    def save_landing(self, data: dict) -> dict:
        buttons = data.get("buttons") or []
        if isinstance(buttons, dict):
            buttons = list(buttons.values())
        landing = {
            "title": data.get("title") or "",
            "subtitle": data.get("subtitle") or "",
            "text": data.get("text") or "",
            "buttons": list(buttons),
        }
        _write_json(self.landing_path, landing)
        return landing

    # ---------- site config ----------

    def read_site_config(self) -> dict:
        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def write_site_config(self, config: dict) -> None:
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, sort_keys=False, allow_unicode=True)

    def get_modules(self) -> List[dict]:
        try:
            return self.read_site_config().get("site_modules") or []
        except (OSError, yaml.YAMLError) as e:
            logger.error("Error reading modules: %s", e)
            return []

    def save_modules(self, modules: List[dict]) -> None:
        config = self.read_site_config()
        config["site_modules"] = modules
        self.write_site_config(config)
