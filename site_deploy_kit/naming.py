"""
naming
------

파일별로 캐시 버스팅 여부를 판단하고 버킷에 저장될 최종 object 이름을 계산한다.

- .css / .js : `{디렉토리/}{basename}-{token}{ext}`
- 그 외       : 상대 경로 그대로 (구분자는 '/')
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .hashing import hash_file
from .logging_utils import get_logger


logger = get_logger(__name__)


CACHE_BUSTED_EXTENSIONS = frozenset({".css", ".js"})

CONTENT_TYPES: Dict[str, str] = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
    ".json": "application/json",
    ".ico": "image/x-icon",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class NameCollisionError(ValueError):
    """서로 다른 두 소스 파일이 같은 최종 object 이름을 갖게 된 경우."""

    def __init__(self, object_name: str, first: str, second: str) -> None:
        super().__init__(
            f"최종 object 이름이 충돌합니다: {object_name} ({first}, {second})"
        )
        self.object_name = object_name
        self.paths = (first, second)


def normalize_path(relative_path: str) -> str:
    return relative_path.replace("\\", "/")


def _split_filename(filename: str) -> Tuple[str, str]:
    """
    `.js` 처럼 점으로 시작하고 다른 점이 없는 파일명은 이름 전체를 확장자로 본다.
    """
    stem, ext = posixpath.splitext(filename)
    if not ext and filename.startswith(".") and filename.count(".") == 1:
        return "", filename
    return stem, ext


def _extension(relative_path: str) -> str:
    return _split_filename(posixpath.basename(normalize_path(relative_path)))[1]


def content_type_for(relative_path: str) -> str:
    return CONTENT_TYPES.get(_extension(relative_path).lower(), DEFAULT_CONTENT_TYPE)


def is_cache_busted(relative_path: str) -> bool:
    return _extension(relative_path).lower() in CACHE_BUSTED_EXTENSIONS


def cache_busted_name(relative_path: str, token: str) -> str:
    """
    디렉토리 prefix 를 유지한 채 basename 뒤에 `-{token}` 을 붙인다.
    확장자의 대소문자는 원본을 따른다.
    """
    path = normalize_path(relative_path)
    directory, filename = posixpath.split(path)
    stem, ext = _split_filename(filename)
    renamed = f"{stem}-{token}{ext}"
    return f"{directory}/{renamed}" if directory else renamed


def final_object_name(relative_path: str, token: Optional[str]) -> str:
    if is_cache_busted(relative_path):
        if not token:
            raise ValueError(f"캐시 버스팅 대상인데 token 이 없습니다: {relative_path}")
        return cache_busted_name(relative_path, token)
    return normalize_path(relative_path)


@dataclass(frozen=True)
class AssetRecord:
    original_relative_path: str
    final_object_name: str
    content_type: str
    is_cache_busted: bool
    source_path: str


def build_asset_record(relative_path: str, source_path: str) -> AssetRecord:
    """
    하나의 소스 파일에 대한 AssetRecord 를 만든다.
    캐시 버스팅 대상일 때만 파일 내용을 읽어 해시한다.
    """
    rel = normalize_path(relative_path)
    busted = is_cache_busted(rel)
    token = hash_file(source_path) if busted else None
    name = final_object_name(rel, token)
    if busted:
        logger.debug("캐시 버스팅: %s -> %s", rel, name)
    return AssetRecord(
        original_relative_path=rel,
        final_object_name=name,
        content_type=content_type_for(rel),
        is_cache_busted=busted,
        source_path=source_path,
    )


def build_rename_map(
    records: Iterable[AssetRecord],
    fail_on_collision: bool = True,
) -> Dict[str, str]:
    """
    원본 상대 경로 -> 최종 object 이름 매핑을 만든다.
    변경되지 않은 파일도 identity 로 포함된다.

    역방향 매핑으로 충돌을 감지하며, fail_on_collision=False 이면
    경고만 남기고 나중 파일이 앞 파일을 덮어쓰게 둔다.
    """
    rename_map: Dict[str, str] = {}
    owners: Dict[str, str] = {}
    for record in records:
        name = record.final_object_name
        previous = owners.get(name)
        if previous is not None and previous != record.original_relative_path:
            if fail_on_collision:
                raise NameCollisionError(name, previous, record.original_relative_path)
            logger.warning(
                "object 이름 충돌로 덮어씁니다: %s (%s -> %s)",
                name,
                previous,
                record.original_relative_path,
            )
        owners[name] = record.original_relative_path
        rename_map[record.original_relative_path] = name
    return rename_map


def entry_object_name(entry_filename: str, token: str) -> str:
    """
    재작성된 엔트리 문서의 object 이름. 서브디렉토리 없이 버킷 루트에 둔다.
    """
    filename = posixpath.basename(normalize_path(entry_filename))
    return cache_busted_name(filename, token)
