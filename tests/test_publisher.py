import hashlib
import os
import re
from typing import List

import pytest

from site_deploy_kit.config import DeployConfig
from site_deploy_kit.naming import NameCollisionError
from site_deploy_kit.publisher import (
    SiteDeployError,
    discover_site,
    find_entry_document,
    publish_site,
)
from site_deploy_kit.storage import PUBLIC_READ_ROLE, RecordingStorage


MAIN_JS = b"document.title = 'shop';"
INDEX_HTML = (
    "<!doctype html>\n"
    "<html><head><script src=\"main.js\"></script></head>\n"
    "<body><img src=\"/img/logo.png\"></body></html>\n"
)


def _cfg(sites_root, **kwargs) -> DeployConfig:
    kwargs.setdefault("bucket_prefix", "bucket")
    return DeployConfig(gcp_project_id="test-project", sites_root=str(sites_root), **kwargs)


def _token(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:8]


class PathRecordingStorage(RecordingStorage):
    def __init__(self) -> None:
        super().__init__()
        self.source_paths: List[str] = []

    def put_object(self, bucket_name, object_name, source_path, *, content_type, cache_control):  # noqa: ANN001
        self.source_paths.append(source_path)
        super().put_object(
            bucket_name,
            object_name,
            source_path,
            content_type=content_type,
            cache_control=cache_control,
        )


@pytest.fixture
def shop_site(write_site):
    return write_site(
        "shop",
        {
            "index.html": INDEX_HTML,
            "main.js": MAIN_JS,
            "img/logo.png": b"\x89PNG\r\n",
        },
    )


def test_discover_site_lists_root_files_first(write_site) -> None:
    site_dir = write_site(
        "docs",
        {"b/index.html": "x", "a/z.css": "z", "index.html": "root", "about.txt": "a"},
    )

    tree = discover_site(str(site_dir))

    assert tree.name == "docs"
    assert [f.relative_path for f in tree.files] == [
        "about.txt",
        "index.html",
        "a/z.css",
        "b/index.html",
    ]
    assert tree.directories == {"a", "b"}
    assert find_entry_document(tree).relative_path == "index.html"


def test_find_entry_document_is_case_insensitive(write_site) -> None:
    site_dir = write_site("upper", {"INDEX.HTML": "<html></html>"})

    entry = find_entry_document(discover_site(str(site_dir)))

    assert entry is not None
    assert entry.relative_path == "INDEX.HTML"


def test_publish_site_end_to_end(sites_root, shop_site) -> None:
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root), storage, str(shop_site))

    bucket = "bucket-shop"
    assert result.bucket_name == bucket
    assert result.base_url == "http://storage.googleapis.com/bucket-shop"
    assert re.fullmatch(r"index-[0-9a-f]{8}\.html", result.entry_object_name)
    assert result.entry_url == f"{result.base_url}/{result.entry_object_name}"

    main_name = f"main-{_token(MAIN_JS)}.js"
    assert storage.object_names(bucket) == sorted(
        ["index.html", main_name, "img/logo.png", result.entry_object_name]
    )

    entry = storage.objects[(bucket, result.entry_object_name)]
    html = entry.data.decode("utf-8")
    assert re.search(r"main-[0-9a-f]{8}\.js", html)
    assert f'src="{main_name}"' in html
    assert 'src="./img/logo.png"' in html
    assert entry.content_type == "text/html"
    # 엔트리 이름은 재작성된 내용의 해시
    assert result.entry_object_name == f"index-{_token(entry.data)}.html"

    # 원본 index.html 은 그대로 업로드된다.
    assert storage.objects[(bucket, "index.html")].data.decode("utf-8") == INDEX_HTML
    assert storage.objects[(bucket, "img/logo.png")].content_type == "image/png"
    assert storage.objects[(bucket, main_name)].content_type == "application/javascript"
    for stored in storage.objects.values():
        assert stored.cache_control == "public, max-age=0, no-cache, no-store, must-revalidate"

    recorded = storage.buckets[bucket]
    assert recorded.main_page_suffix == "index.html"
    assert recorded.location == "US"
    assert recorded.uniform_access is True
    assert recorded.bindings == {PUBLIC_READ_ROLE: {"allUsers"}}


def test_entry_upload_happens_after_assets(sites_root, shop_site) -> None:
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root, upload_workers=4), storage, str(shop_site))

    kinds = [kind for kind, _ in storage.calls]
    assert kinds[0] == "create_bucket"
    assert kinds[-1] == "grant_public_read"
    assert storage.calls[-2] == ("put_object", f"bucket-shop/{result.entry_object_name}")


def test_scratch_entry_file_is_removed(sites_root, shop_site) -> None:
    storage = PathRecordingStorage()

    publish_site(_cfg(sites_root), storage, str(shop_site))

    scratch = [p for p in storage.source_paths if not p.startswith(str(shop_site))]
    assert len(scratch) == 1
    assert scratch[0].endswith(".html")
    assert not os.path.exists(scratch[0])


def test_site_without_entry_document(sites_root, write_site) -> None:
    site_dir = write_site("assets-only", {"style.css": "h1{}", "logo.png": b"png"})
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root), storage, str(site_dir))

    assert result.base_url == "http://storage.googleapis.com/bucket-assets-only"
    assert result.entry_url is None
    assert result.entry_object_name is None
    assert storage.object_names("bucket-assets-only") == sorted(
        ["logo.png", f"style-{_token(b'h1{}')}.css"]
    )


def test_republishing_unchanged_site_is_reproducible(sites_root, shop_site) -> None:
    first = publish_site(_cfg(sites_root), RecordingStorage(), str(shop_site))
    second = publish_site(_cfg(sites_root), RecordingStorage(), str(shop_site))

    assert first.rename_map == second.rename_map
    assert first.entry_object_name == second.entry_object_name


def test_changed_asset_changes_entry_name(sites_root, shop_site) -> None:
    before = publish_site(_cfg(sites_root), RecordingStorage(), str(shop_site))
    (shop_site / "main.js").write_bytes(MAIN_JS + b"\n// v2")
    after = publish_site(_cfg(sites_root), RecordingStorage(), str(shop_site))

    assert before.rename_map["main.js"] != after.rename_map["main.js"]
    assert before.entry_object_name != after.entry_object_name


def test_subdirectory_assets_are_rewritten(sites_root, write_site) -> None:
    css = b".btn { color: blue }"
    site_dir = write_site(
        "blog",
        {
            "index.html": '<link rel="stylesheet" href="/css/site.css">',
            "css/site.css": css,
        },
    )
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root), storage, str(site_dir))

    html = storage.objects[("bucket-blog", result.entry_object_name)].data.decode("utf-8")
    assert html == f'<link rel="stylesheet" href="./css/site-{_token(css)}.css">'


def test_entry_name_collision_aborts_before_provisioning(sites_root, write_site) -> None:
    html = b"<p>hi</p>"
    site_dir = write_site(
        "clash",
        {"index.html": html, f"index-{_token(html)}.html": b"stale"},
    )
    storage = RecordingStorage()

    with pytest.raises(NameCollisionError) as excinfo:
        publish_site(_cfg(sites_root), storage, str(site_dir))

    assert "index.html" in str(excinfo.value)
    assert storage.calls == []


def test_entry_name_collision_can_overwrite(sites_root, write_site) -> None:
    html = b"<p>hi</p>"
    stale_name = f"index-{_token(html)}.html"
    site_dir = write_site("clash", {"index.html": html, stale_name: b"stale"})
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root, fail_on_collision=False), storage, str(site_dir))

    assert result.entry_object_name == stale_name
    assert storage.objects[("bucket-clash", stale_name)].data == html


def test_upload_failure_is_wrapped_and_stops_site(sites_root, shop_site) -> None:
    storage = RecordingStorage(fail_objects={"img/logo.png"})

    with pytest.raises(SiteDeployError) as excinfo:
        publish_site(_cfg(sites_root), storage, str(shop_site))

    assert excinfo.value.site_name == "shop"
    names = storage.object_names("bucket-shop")
    assert not any(n.startswith("index-") for n in names)
    assert ("grant_public_read", "bucket-shop") not in storage.calls


def test_public_read_can_be_disabled(sites_root, shop_site) -> None:
    storage = RecordingStorage()

    publish_site(_cfg(sites_root, public_read=False), storage, str(shop_site))

    assert storage.buckets["bucket-shop"].bindings == {}


def test_non_utf8_entry_bytes_are_preserved(sites_root, write_site) -> None:
    html = '<p>caf\xe9</p><script src="app.js"></script>'.encode("latin-1")
    site_dir = write_site("legacy", {"index.html": html, "app.js": "1"})
    storage = RecordingStorage()

    result = publish_site(_cfg(sites_root), storage, str(site_dir))

    entry = storage.objects[("bucket-legacy", result.entry_object_name)]
    assert entry.data == f'<p>caf\xe9</p><script src="app-{_token(b"1")}.js"></script>'.encode("latin-1")
    assert result.entry_object_name == f"index-{_token(entry.data)}.html"
