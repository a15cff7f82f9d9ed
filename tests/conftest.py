import io
import os
import sys

import pytest
from PIL import Image

# Ensure the project root is on sys.path when running via the pytest binary
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from b2_gateway import B2Config, B2Gateway
from content_store import ContentStore


class FakeVersion:
    def __init__(self, id_, file_name):
        self.id_ = id_
        self.file_name = file_name


class FakeBucket:
    def __init__(self, api, id_, name=None):
        self.api = api
        self.id_ = id_
        self.name = name

    @property
    def objects(self):
        return self.api.backend.objects

    def upload_bytes(self, data, file_name, content_type=None):
        if file_name in self.api.backend.fail_on:
            raise RuntimeError(f"upload failed: {file_name}")
        self.api.backend.uploads.append(file_name)
        self.objects[file_name] = (data, content_type)
        return FakeVersion(f"id-{file_name}", file_name)

    def list_file_versions(self, file_name, fetch_count=None):
        self.api.backend.listed.append((file_name, fetch_count))
        if file_name in self.objects:
            yield FakeVersion(f"id-{file_name}", file_name)

    def delete_file_version(self, file_id, file_name):
        self.api.backend.deleted.append(file_name)
        del self.objects[file_name]


class FakeApi:
    BUCKET_CLASS = FakeBucket

    def __init__(self, backend):
        self.backend = backend

    def authorize_account(self, realm, key_id, key):
        self.backend.authorizations += 1
        if self.backend.auth_error is not None:
            raise self.backend.auth_error

    def get_bucket_by_name(self, name):
        if self.backend.list_error is not None:
            raise self.backend.list_error
        return FakeBucket(self, "bucket-from-lookup", name=name)


class FakeB2:
    """In-memory stand-in for the B2 service."""

    def __init__(self):
        self.objects = {}
        self.uploads = []
        self.deleted = []
        self.listed = []
        self.fail_on = set()
        self.authorizations = 0
        self.auth_error = None
        self.list_error = None

    def api(self):
        return FakeApi(self)


def b2_config(**overrides):
    values = dict(
        application_key_id="key-id",
        application_key="secret",
        bucket_name="photos",
        bucket_id="bucket-1",
    )
    values.update(overrides)
    return B2Config(**values)


def make_image(fmt="PNG", size=(1200, 800), mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color=(200, 40, 40) if mode == "RGB" else None).save(buf, fmt)
    return buf.getvalue()


@pytest.fixture
def fake_b2():
    return FakeB2()


@pytest.fixture
def gateway(fake_b2):
    return B2Gateway(b2_config(), api_factory=fake_b2.api)


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / "site"
    (root / "_posts").mkdir(parents=True)
    (root / "_projects").mkdir()
    (root / "_data" / "virtual-photography").mkdir(parents=True)
    (root / "pages").mkdir()
    (root / "_config.yml").write_text(
        "title: My Site\n"
        "site_modules:\n"
        "  - id: blog\n    enabled: true\n"
        "  - id: vp\n    enabled: true\n"
        "  - id: projects\n    enabled: false\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def store(site_root):
    return ContentStore(str(site_root))
