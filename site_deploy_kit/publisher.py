"""
publisher
---------

사이트 하나를 버킷에 배포하는 모듈.

1. 사이트 디렉토리를 재귀적으로 훑어 파일 목록/최상위 디렉토리 목록을 만든다.
2. 파일마다 AssetRecord 를 계산한다 (.css/.js 는 해시를 붙인 이름).
3. 정적 웹사이트용 버킷을 준비하고, 모든 파일을 최종 object 이름으로 업로드한다.
4. index.html 이 있으면 참조를 재작성한 뒤 `index-{hash}.html` 로 업로드한다.
5. 버킷에 공개 읽기 권한을 부여하고 PublishResult 를 돌려준다.

3 의 업로드가 모두 끝난 뒤에만 4 를 수행한다.
"""

from __future__ import annotations

import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from google.api_core.exceptions import GoogleAPIError

from .config import DeployConfig
from .hashing import hash_bytes, hash_file
from .logging_utils import get_logger
from .naming import (
    AssetRecord,
    NameCollisionError,
    build_asset_record,
    build_rename_map,
    entry_object_name,
)
from .rewriter import rewrite
from .storage import SiteStorage


logger = get_logger(__name__)


HTML_CONTENT_TYPE = "text/html"


class SiteDeployError(RuntimeError):
    """사이트 배포 중 스토리지/IO 오류가 발생한 경우."""

    def __init__(self, site_name: str, cause: Exception) -> None:
        super().__init__(f"사이트 배포에 실패했습니다: {site_name} ({cause})")
        self.site_name = site_name


@dataclass(frozen=True)
class SourceFile:
    relative_path: str
    path: str

    @property
    def filename(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]


@dataclass
class SiteTree:
    name: str
    root: str
    files: List[SourceFile] = field(default_factory=list)
    directories: Set[str] = field(default_factory=set)


@dataclass
class SiteState:
    """
    사이트 한 번의 배포 동안만 쓰는 작업 상태. 사이트 간에 공유하지 않는다.
    """

    tree: SiteTree
    bucket_name: str
    records: List[AssetRecord] = field(default_factory=list)
    rename_map: Dict[str, str] = field(default_factory=dict)
    entry_object_name: Optional[str] = None


@dataclass(frozen=True)
class PublishResult:
    site_name: str
    bucket_name: str
    base_url: str
    entry_object_name: Optional[str] = None
    entry_url: Optional[str] = None
    rename_map: Dict[str, str] = field(default_factory=dict)

    @property
    def object_count(self) -> int:
        count = len(self.rename_map)
        return count + 1 if self.entry_object_name else count


def discover_site(site_dir: str) -> SiteTree:
    """
    사이트 디렉토리를 재귀적으로 훑는다.

    디렉토리/파일 이름을 정렬해서 순회하므로 같은 입력이면 항상 같은 순서가 나온다.
    각 디렉토리의 파일이 하위 디렉토리보다 먼저 나온다.
    """
    root = os.path.abspath(site_dir)
    tree = SiteTree(name=os.path.basename(root.rstrip(os.sep)), root=root)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = os.path.join(dirpath, filename)
            relative_path = os.path.relpath(path, root).replace(os.sep, "/")
            tree.files.append(SourceFile(relative_path=relative_path, path=path))

    with os.scandir(root) as entries:
        for entry in entries:
            if entry.is_dir():
                tree.directories.add(entry.name)

    return tree


def find_entry_document(tree: SiteTree, entry_filename: str = "index.html") -> Optional[SourceFile]:
    wanted = entry_filename.lower()
    for source in tree.files:
        if source.filename.lower() == wanted:
            return source
    return None


def _record_for(source: SourceFile) -> AssetRecord:
    return build_asset_record(source.relative_path, source.path)


def plan_assets(cfg: DeployConfig, state: SiteState, executor: ThreadPoolExecutor) -> None:
    """
    모든 파일의 AssetRecord 와 RenameMap 을 만든다.
    여기서 만들어진 RenameMap 은 완전해야 하며, 이후 단계는 이 값만 사용한다.
    """
    state.records = list(executor.map(_record_for, state.tree.files))
    state.rename_map = build_rename_map(state.records, fail_on_collision=cfg.fail_on_collision)
    busted = sum(1 for r in state.records if r.is_cache_busted)
    logger.info(
        "[%s] 파일 %d개 (캐시 버스팅 %d개)",
        state.tree.name,
        len(state.records),
        busted,
    )


def upload_assets(
    cfg: DeployConfig,
    storage: SiteStorage,
    state: SiteState,
    executor: ThreadPoolExecutor,
) -> None:
    """
    원본 바이트를 최종 object 이름으로 업로드한다. 하나라도 실패하면 남은 작업을 취소하고 예외를 올린다.
    """
    futures = {
        executor.submit(
            storage.put_object,
            state.bucket_name,
            record.final_object_name,
            record.source_path,
            content_type=record.content_type,
            cache_control=cfg.cache_control,
        ): record
        for record in state.records
    }
    try:
        for future in as_completed(futures):
            future.result()
    except BaseException:
        for future in futures:
            future.cancel()
        raise
    logger.info("[%s] object %d개 업로드 완료", state.tree.name, len(futures))


def render_entry_document(cfg: DeployConfig, state: SiteState, entry: SourceFile) -> str:
    # UTF-8 이 아닌 바이트는 surrogateescape 로 보존해서 쓸 때 그대로 되돌린다.
    with open(entry.path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        html = f.read()

    return rewrite(
        html,
        state.rename_map,
        state.tree.directories,
        scoped=cfg.scoped_rewrite,
    )


def claim_entry_name(cfg: DeployConfig, state: SiteState, object_name: str, entry: SourceFile) -> None:
    """
    엔트리 object 이름이 다른 자산의 최종 이름과 겹치는지 확인한다.
    """
    for original, final in state.rename_map.items():
        if final != object_name:
            continue
        if cfg.fail_on_collision:
            raise NameCollisionError(object_name, original, entry.relative_path)
        logger.warning(
            "엔트리 문서가 기존 object 를 덮어씁니다: %s (%s)",
            object_name,
            original,
        )


def plan_entry(cfg: DeployConfig, state: SiteState) -> Optional[str]:
    """
    업로드 전에 엔트리 문서의 최종 이름을 미리 계산하고 충돌을 검사한다.
    엔트리 문서가 없으면 None.
    """
    entry = find_entry_document(state.tree, cfg.entry_document)
    if entry is None:
        return None
    rendered = render_entry_document(cfg, state, entry)
    token = hash_bytes(rendered.encode("utf-8", "surrogateescape"))
    object_name = entry_object_name(cfg.entry_document, token)
    claim_entry_name(cfg, state, object_name, entry)
    return object_name


def publish_entry_document(
    cfg: DeployConfig,
    storage: SiteStorage,
    state: SiteState,
    entry: SourceFile,
) -> str:
    """
    엔트리 문서를 재작성해서 임시 파일에 쓰고, 그 내용의 해시로 이름을 붙여 업로드한다.
    업로드한 object 이름을 반환한다.
    """
    rewritten = render_entry_document(cfg, state, entry)

    fd, tmp_path = tempfile.mkstemp(suffix=".html")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(rewritten)
            f.flush()
            os.fsync(f.fileno())

        object_name = entry_object_name(cfg.entry_document, hash_file(tmp_path))
        claim_entry_name(cfg, state, object_name, entry)
        storage.put_object(
            state.bucket_name,
            object_name,
            tmp_path,
            content_type=HTML_CONTENT_TYPE,
            cache_control=cfg.cache_control,
        )
    finally:
        os.remove(tmp_path)

    logger.info("[%s] 엔트리 문서 업로드: %s -> %s", state.tree.name, entry.relative_path, object_name)
    return object_name


def publish_site(cfg: DeployConfig, storage: SiteStorage, site_dir: str) -> PublishResult:
    """
    사이트 하나를 배포한다.

    스토리지/IO 오류는 SiteDeployError 로 감싸서 올린다. 이름 충돌은 NameCollisionError 그대로 올린다.
    엔트리 문서가 없으면 entry_url 이 None 인 결과를 돌려준다.
    """
    tree = discover_site(site_dir)
    state = SiteState(tree=tree, bucket_name=cfg.bucket_name_for(tree.name))
    logger.info("[%s] 사이트 배포 시작 (bucket=%s)", tree.name, state.bucket_name)

    try:
        with ThreadPoolExecutor(max_workers=cfg.upload_workers) as executor:
            plan_assets(cfg, state, executor)
            planned_entry = plan_entry(cfg, state)
            logger.debug("[%s] 예상 엔트리 object: %s", tree.name, planned_entry)

            storage.create_bucket(
                state.bucket_name,
                location=cfg.bucket_location,
                main_page_suffix=cfg.main_page_suffix,
                uniform_access=True,
            )

            upload_assets(cfg, storage, state, executor)

        entry = find_entry_document(tree, cfg.entry_document)
        if entry is None:
            logger.info("[%s] %s 가 없어 엔트리 문서 업로드를 건너뜁니다.", tree.name, cfg.entry_document)
        else:
            state.entry_object_name = publish_entry_document(cfg, storage, state, entry)

        if cfg.public_read:
            storage.grant_public_read(state.bucket_name)
    except (GoogleAPIError, OSError) as e:
        raise SiteDeployError(tree.name, e) from e

    base_url = cfg.public_base_url(state.bucket_name)
    entry_url = f"{base_url}/{state.entry_object_name}" if state.entry_object_name else None
    if entry_url:
        logger.info("[%s] 엔트리 URL: %s", tree.name, entry_url)

    return PublishResult(
        site_name=tree.name,
        bucket_name=state.bucket_name,
        base_url=base_url,
        entry_object_name=state.entry_object_name,
        entry_url=entry_url,
        rename_map=dict(state.rename_map),
    )
