#!/usr/bin/env python3
# coding: utf-8
"""
vippy-admin: local admin panel for the site (JSON API).
- Virtual photography albums: post front matter + image manifest, images on B2.
- Blog posts, projects, about page, landing data and site config.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from functools import wraps

from flask import Flask, abort, jsonify, redirect, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import albums
from albums import AlbumNotFound
from b2_gateway import B2Config, B2Gateway, load_b2_config, save_b2_config
from content_store import ContentStore, InvalidRequest, valid_name
from image_ingest import ImageRejected, Upload

# ------------------ config ------------------
APP_DIR = os.path.dirname(os.path.abspath(__file__))
SITE_ROOT = os.environ.get("VIPPY_SITE_ROOT", os.path.abspath(os.path.join(APP_DIR, "..")))
B2_CONFIG_PATH = os.environ.get("VIPPY_B2_CONFIG", os.path.join(APP_DIR, ".b2-config.json"))
INGEST_WORKERS = int(os.environ.get("VIPPY_INGEST_WORKERS", "4"))
MAX_CONTENT_LENGTH = 5 * 1024 * 1024 * 1024  # 5 GB/request

app = Flask(__name__)
app.config["SITE_ROOT"] = SITE_ROOT
app.config["B2_CONFIG_PATH"] = B2_CONFIG_PATH
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

gateway = B2Gateway(load_b2_config(B2_CONFIG_PATH))
executor = ThreadPoolExecutor(max_workers=max(1, INGEST_WORKERS))


# ------------------ tools ------------------

def store() -> ContentStore:
    return ContentStore(app.config["SITE_ROOT"])


def payload() -> dict:
    """Request fields from either a JSON body or a form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def uploads(field: str):
    items = []
    for f in request.files.getlist(field):
        if not f or f.filename == "":
            continue
        items.append(Upload(f.filename, f.read(), f.mimetype))
    return items


def checked(name: str) -> str:
    if not valid_name(name):
        abort(400)
    return name


def flag(value) -> bool:
    return value is True or value in ("true", "on", "1")


def millis() -> int:
    return int(time.time() * 1000)


def upload_asset(prefix: str, upload: Upload) -> str:
    """Store a single page asset (blog header, project image) and return its URL."""
    ext = os.path.splitext(upload.filename)[1].lower()
    key = f"{prefix}/{millis()}{ext}"
    gateway.upload(key, upload.data, upload.mimetype)
    return gateway.public_url(key)


def json_errors(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except HTTPException:
            raise
        except AlbumNotFound as e:
            return jsonify({"error": str(e)}), 404
        except (InvalidRequest, ImageRejected) as e:
            return jsonify({"error": str(e)}), 400
        except FileNotFoundError as e:
            return jsonify({"success": False, "error": f"Not found: {os.path.basename(e.filename or '')}"}), 404
        except Exception as e:
            app.logger.exception("%s failed", f.__name__)
            return jsonify({"error": str(e)}), 500
    return wrapper


@app.errorhandler(RequestEntityTooLarge)
def too_large(e):
    return jsonify({"error": "Upload too large"}), 413


@app.errorhandler(400)
def bad_request(e):
    return jsonify({"error": "Invalid request"}), 400


# ------------------ routes: home / modules ------------------

@app.route("/")
def index():
    return redirect("/vippy")


@app.route("/vippy")
def home():
    return jsonify({"modules": store().get_modules(), "isConfigured": gateway.config.is_configured})


@app.route("/api/modules/reorder", methods=["POST"])
def reorder_modules():
    try:
        states = payload().get("modules") or []
        s = store()
        current = s.get_modules()
        by_id = {m.get("id"): m for m in current}
        updated, seen = [], set()
        for state in states:
            mod = by_id.get(state.get("id"))
            if mod is not None and mod.get("id") not in seen:
                mod["enabled"] = flag(state.get("enabled"))
                updated.append(mod)
                seen.add(mod.get("id"))
        # modules the client didn't send keep their place at the end
        updated.extend(m for m in current if m.get("id") not in seen)
        s.save_modules(updated)
        return jsonify({"success": True})
    except Exception as e:
        app.logger.exception("module reorder failed")
        return jsonify({"success": False, "error": str(e)}), 500


# ------------------ routes: albums ------------------

@app.route("/vippy/vp")
def list_albums():
    cfg = gateway.config
    has_b2 = bool(cfg.application_key_id and cfg.application_key and cfg.bucket_id)
    return jsonify({"albums": store().list_albums(), "hasB2Config": has_b2})


@app.route("/vippy/vp/edit/<slug>")
def get_album(slug):
    album = store().get_album(checked(slug))
    if album is None:
        return jsonify({"error": "Album not found"}), 404
    return jsonify(album)


@app.route("/vippy/vp/create", methods=["POST"])
@json_errors
def create_album():
    fields = request.form.to_dict()
    result = albums.create_album(store(), gateway, fields, uploads("images"), executor)
    title = fields.get("title", "").strip()
    return jsonify({
        "success": True,
        "slug": result["slug"],
        "message": f'Album "{title}" created with {len(result["images"])} images',
    })


@app.route("/vippy/vp/update/<slug>", methods=["POST"])
@json_errors
def update_album(slug):
    albums.update_album(store(), checked(slug), payload())
    return jsonify({"success": True, "message": "Album updated"})


@app.route("/vippy/vp/add-images/<slug>", methods=["POST"])
@json_errors
def add_images(slug):
    files = uploads("images")
    total = albums.add_images(store(), gateway, checked(slug), files, executor)
    return jsonify({"success": True, "message": f"Added {len(files)} images", "totalImages": total})


@app.route("/vippy/vp/delete-image/<slug>/<index>", methods=["POST"])
@json_errors
def delete_image(slug, index):
    albums.delete_image(store(), gateway, checked(slug), index)
    return jsonify({"success": True, "message": "Image deleted"})


@app.route("/vippy/vp/delete/<slug>", methods=["POST"])
@json_errors
def delete_album(slug):
    albums.delete_album(store(), gateway, checked(slug))
    return jsonify({"success": True, "message": "Album deleted"})


@app.route("/vippy/vp/reorder-images/<slug>", methods=["POST"])
@json_errors
def reorder_images(slug):
    albums.reorder_images(store(), checked(slug), payload().get("order"))
    return jsonify({"success": True, "message": "Images reordered"})


@app.route("/vippy/order")
@app.route("/vippy/vp/order")
def album_order():
    s = store()
    return jsonify({"albums": s.list_albums(), "order": s.get_order()})


@app.route("/vippy/save-order", methods=["POST"])
@app.route("/vippy/vp/reorder", methods=["POST"])
@json_errors
def save_order():
    albums.save_album_order(store(), payload().get("order"))
    return jsonify({"success": True, "message": "Album order saved"})


# ------------------ routes: settings ------------------

@app.route("/settings/config", methods=["GET", "POST"])
@json_errors
def b2_settings():
    if request.method == "GET":
        return jsonify(gateway.config.to_dict())
    data = payload()
    cfg = B2Config.from_dict({
        "application_key_id": data.get("application_key_id") or "",
        "application_key": data.get("application_key") or "",
        "bucket_name": data.get("bucket_name") or "",
        "bucket_id": data.get("bucket_id") or "",
        "use_cdn": flag(data.get("use_cdn")),
        "cdn_domain": data.get("cdn_domain") or "",
    })
    save_b2_config(app.config["B2_CONFIG_PATH"], cfg)
    gateway.configure(cfg)
    return jsonify({"success": True, "message": "Configuration saved and applied"})


@app.route("/settings/site-config", methods=["GET", "POST"])
def site_config():
    s = store()
    if request.method == "GET":
        try:
            return jsonify(s.read_site_config())
        except Exception:
            app.logger.exception("Error reading _config.yml")
            return jsonify({"error": "Failed to read site config"}), 500
    try:
        data = payload()
        config = s.read_site_config()
        for key in ("title", "description", "url"):
            if data.get(key):
                config[key] = data[key]
        author = config.get("author") or {}
        config["author"] = author
        for key in ("name", "email"):
            if data.get(f"author_{key}"):
                author[key] = data[f"author_{key}"]
        for key in ("github", "twitter", "bluesky"):
            if f"author_{key}" in data:
                author[key] = data[f"author_{key}"]
        vp = config.get("virtual_photography") or {}
        config["virtual_photography"] = vp
        if "vp_show_date" in data:
            vp["show_date"] = flag(data["vp_show_date"])
        if "vp_show_tags" in data:
            vp["show_tags"] = flag(data["vp_show_tags"])
        s.write_site_config(config)
        return jsonify({"success": True, "message": "Site configuration updated!"})
    except Exception:
        app.logger.exception("Error writing _config.yml")
        return jsonify({"error": "Failed to update site config"}), 500


# ------------------ routes: blog / projects / pages ------------------

@app.route("/vippy/blog")
def blog_posts():
    return jsonify(store().list_blog_posts())


@app.route("/vippy/blog/save", methods=["POST"])
@json_errors
def save_blog_post():
    data = payload()
    header = uploads("headerImage")
    data["image"] = data.get("imageUrl") or data.get("image")
    if header:
        data["image"] = upload_asset("blog", header[0])
    original = data.get("originalFilename")
    filename = store().save_blog_post(data, checked(original) if original else None)
    return jsonify({"success": True, "filename": filename})


@app.route("/vippy/blog/delete/<file_slug>", methods=["POST"])
@json_errors
def delete_blog_post(file_slug):
    store().delete_post(checked(file_slug))
    return jsonify({"success": True})


@app.route("/vippy/projects")
def projects():
    return jsonify(store().list_projects())


@app.route("/vippy/projects/save", methods=["POST"])
@json_errors
def save_project():
    data = payload()
    image = uploads("projectImage")
    data["image"] = data.get("imageUrl") or data.get("image")
    if image:
        data["image"] = upload_asset("projects", image[0])
    original = data.get("originalFilename")
    file_slug = store().save_project(data, checked(original) if original else None)
    return jsonify({"success": True, "fileSlug": file_slug})


@app.route("/vippy/projects/delete/<file_slug>", methods=["POST"])
@json_errors
def delete_project(file_slug):
    store().delete_project(checked(file_slug))
    return jsonify({"success": True})


@app.route("/vippy/about")
@json_errors
def about():
    return jsonify(store().read_about())


@app.route("/vippy/about/save", methods=["POST"])
@json_errors
def save_about():
    store().save_about(payload())
    return jsonify({"success": True})


@app.route("/vippy/landing")
def landing():
    return jsonify(store().read_landing())


@app.route("/vippy/landing/save", methods=["POST"])
@json_errors
def save_landing():
    return jsonify({"success": True, "data": store().save_landing(payload())})


if __name__ == '__main__':
    logging.basicConfig(level=os.environ.get("VIPPY_LOG_LEVEL", "INFO"),
                        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    PORT = int(os.environ.get("VIPPY_PORT", "3001"))
    print("\nVirtual Photography Admin Panel")
    print(f"   Running at: http://localhost:{PORT}/vippy")
    print(f"   B2 Bucket: {gateway.config.bucket_name}")
    print(f"   CDN: {gateway.config.cdn_domain or 'Not configured'}\n")
    app.run('127.0.0.1', PORT, debug=False)
