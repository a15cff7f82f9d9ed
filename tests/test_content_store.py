import json
from datetime import date

import frontmatter
import pytest

from content_store import ContentStore, InvalidRequest, normalize_image, post_date, slugify, valid_name


def write_album(store, slug, post_date="2024-01-01", images=None, **meta):
    album = {"slug": slug, "title": meta.pop("title", slug.title()), "date": post_date}
    album.update(meta)
    store.write_album_post(f"{post_date}-{slug}.md", album)
    store.write_manifest(slug, images if images is not None else [])


@pytest.mark.parametrize("title, expected", [
    ("Hello World", "hello-world"),
    ("Cyberpunk 2077: Phantom Liberty!", "cyberpunk-2077-phantom-liberty"),
    ("Mr. Smith's (Big) Day @ Home", "mr-smiths-big-day-home"),
    ("v1.2 ~ test*+", "v12-test"),
    ("Café Déjà Vu", "cafe-deja-vu"),
    ("  --Spaces   and---dashes-- ", "spaces-and-dashes"),
])
def test_slugify(title, expected):
    assert slugify(title) == expected
    assert slugify(slugify(title)) == slugify(title)


def test_valid_name():
    assert valid_name("2024-01-01-hello")
    assert not valid_name("../etc")
    assert not valid_name("a/b")
    assert not valid_name("")


def test_normalize_image_legacy_aliases():
    legacy = {"imageFull-link": "https://x/a/img000.jpg", "thumbnail-link": "https://x/a/thumb/img000.webp",
              "aspect-ratio": "1.7778"}
    assert normalize_image(legacy) == {
        "url": "https://x/a/img000.jpg",
        "thumb": "https://x/a/thumb/img000.webp",
        "aspectRatio": 1.7778,
        "width": 0,
        "height": 0,
    }
    assert normalize_image({})["aspectRatio"] == 1.5


def test_write_manifest_drops_legacy_names(store):
    store.write_manifest("a", [{"imageFull-link": "u", "thumbnail-link": "t", "aspect-ratio": 2, "width": 4}])
    with open(store.manifest_path("a"), encoding="utf-8") as f:
        raw = json.load(f)
    assert raw == [{"url": "u", "thumb": "t", "aspectRatio": 2.0, "width": 4, "height": 0}]


def test_album_defaults(store):
    post = frontmatter.Post("", title="Bare", date=date(2024, 3, 2), tags="one, two")
    with open(f"{store.posts_dir}/2024-03-02-bare.md", "w", encoding="utf-8") as f:
        f.write(frontmatter.dumps(post))
    store.write_manifest("bare", [])
    album = store.get_album("bare")
    assert album["date"] == "2024-03-02"
    assert album["tags"] == ["one", "two"]
    assert album["description"] == "Virtual Photography"
    assert (album["cardImage"], album["cardOffset"], album["cardOffsetX"], album["cardZoom"]) == (0, 50, 50, 100)
    assert (album["bannerImage"], album["bannerOffset"], album["bannerOffsetX"], album["bannerZoom"]) == (0, 50, 50, 100)


def test_explicit_zero_offset_kept(store):
    write_album(store, "zero", cardOffset=0)
    assert store.get_album("zero")["cardOffset"] == 0


def test_album_post_front_matter(store):
    write_album(store, "shots", post_date="2024-05-06", title="Shots", developer="Dev", tags=["a"])
    post = frontmatter.load(f"{store.posts_dir}/2024-05-06-shots.md")
    assert post.content == ""
    assert post["layout"] == "post"
    assert post["categories"] == ["virtual-photography"]
    assert post["slug"] == "shots"
    assert post["developer"] == "Dev"
    assert post["banner-zoom"] == 100


def test_orphan_manifest_is_not_listed(store):
    write_album(store, "kept")
    store.write_manifest("orphan", [{"url": "u"}])
    assert [a["slug"] for a in store.list_albums()] == ["kept"]
    assert store.get_album("orphan") is None


def test_find_post_file_matches_whole_slug(store):
    write_album(store, "foo-bar")
    write_album(store, "bar", post_date="2023-01-01")
    assert store.find_post_file("bar") == "2023-01-01-bar.md"
    assert store.find_post_file("foo-bar") == "2024-01-01-foo-bar.md"
    assert store.find_post_file("baz") is None


def test_listing_order_uses_ledger_then_date(store):
    write_album(store, "a", post_date="2024-01-01")
    write_album(store, "b", post_date="2023-01-01")
    write_album(store, "c", post_date="2025-01-01")
    assert [a["slug"] for a in store.list_albums()] == ["c", "a", "b"]
    store.save_order(["b", "a"])
    assert [a["slug"] for a in store.list_albums()] == ["b", "a", "c"]


def test_ledger_filters_nulls_and_tolerates_stale(store):
    with open(store.order_path, "w", encoding="utf-8") as f:
        json.dump([None, "gone", "a", None], f)
    assert store.get_order() == ["gone", "a"]
    write_album(store, "a")
    assert [a["slug"] for a in store.list_albums()] == ["a"]


def test_missing_ledger_is_empty(store):
    assert store.get_order() == []


def test_broken_manifest_reads_empty(store):
    write_album(store, "broken")
    with open(store.manifest_path("broken"), "w", encoding="utf-8") as f:
        f.write("{not json")
    assert store.get_album("broken")["images"] == []


def test_rename_missing_post_is_noop(store):
    assert store.rename_post("2020-01-01-nope.md", "2021-01-01-nope.md") is False


def test_blog_posts_exclude_albums(store):
    write_album(store, "album")
    store.save_blog_post({"title": "First Post", "date": "2024-02-02", "content": "Hello", "tags": "x, y"})
    posts = store.list_blog_posts()
    assert [p["fileSlug"] for p in posts] == ["2024-02-02-first-post"]
    assert posts[0]["categories"] == ["blog"]
    assert posts[0]["tags"] == ["x", "y"]
    assert posts[0]["content"] == "Hello"


def test_blog_rename_removes_old_file(store):
    store.save_blog_post({"title": "Post", "date": "2024-02-02"})
    store.save_blog_post({"title": "Post", "date": "2024-03-03"}, original="2024-02-02-post")
    assert [p["filename"] for p in store.list_blog_posts()] == ["2024-03-03-post.md"]


def test_projects_natural_order(store):
    store.save_project({"name": "Ten", "tools": "py"}, original="10-ten")
    store.save_project({"name": "Two", "external_url": "https://example.com"}, original="2-two")
    projects = store.list_projects()
    assert [p["fileSlug"] for p in projects] == ["2-two", "10-ten"]
    assert projects[0]["external_url"] == "https://example.com"
    assert projects[1]["external_url"] is None
    assert projects[1]["tools"] == ["py"]


def test_modules_round_trip(store):
    modules = store.get_modules()
    assert [m["id"] for m in modules] == ["blog", "vp", "projects"]
    store.save_modules(list(reversed(modules)))
    assert [m["id"] for m in store.get_modules()] == ["projects", "vp", "blog"]
    assert store.read_site_config()["title"] == "My Site"


def test_landing_buttons_from_mapping(store):
    saved = store.save_landing({"title": "Hi", "buttons": {"0": {"label": "a"}, "1": {"label": "b"}}})
    assert saved["buttons"] == [{"label": "a"}, {"label": "b"}]
    assert store.read_landing() == saved


def test_landing_defaults_when_missing(tmp_path):
    assert ContentStore(str(tmp_path)).read_landing()["buttons"] == []


def test_post_date():
    assert post_date("2024-02-29") == "2024-02-29"
    assert post_date("") == date.today().isoformat()
    for bad in ("2023-02-29", "../x", "2024-2-2", "2024-02-02T00:00"):
        with pytest.raises(InvalidRequest):
            post_date(bad)


def test_blog_post_rejects_bad_date_and_keeps_original(store):
    store.save_blog_post({"title": "Post", "date": "2024-02-02"})
    with pytest.raises(InvalidRequest):
        store.save_blog_post({"title": "Post", "date": "../x"}, original="2024-02-02-post")
    assert [p["filename"] for p in store.list_blog_posts()] == ["2024-02-02-post.md"]


def test_broken_project_is_skipped(store):
    store.save_project({"name": "Good"}, original="good")
    with open(f"{store.projects_dir}/bad.md", "w", encoding="utf-8") as f:
        f.write("---\nname: [unclosed\n---\n")
    assert [p["fileSlug"] for p in store.list_projects()] == ["good"]
