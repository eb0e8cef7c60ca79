from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .config import DeployConfig
from .logging_utils import get_logger
from .naming import NameCollisionError, build_asset_record, build_rename_map
from .publisher import (
    PublishResult,
    SiteState,
    discover_site,
    find_entry_document,
    plan_entry,
    publish_site,
)
from .storage import RecordingStorage, SiteStorage


logger = get_logger(__name__)

# GCS 버킷 이름 길이 제한 (점이 없는 이름 기준)
_BUCKET_NAME_MIN = 3
_BUCKET_NAME_MAX = 63


def discover_sites(sites_root: str) -> Dict[str, str]:
    """
    sites_root 바로 아래의 디렉토리 하나하나를 사이트로 본다.
    사이트 이름 -> 디렉토리 경로 (이름순).
    """
    if not os.path.isdir(sites_root):
        raise FileNotFoundError(f"사이트 루트 디렉토리가 없습니다: {sites_root}")

    sites: Dict[str, str] = {}
    with os.scandir(sites_root) as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            if entry.is_dir():
                sites[entry.name] = entry.path
    return sites


def _filter_sites(sites: Dict[str, str], only_sites: Optional[Iterable[str]]) -> Dict[str, str]:
    if not only_sites:
        return sites
    requested = set(only_sites)
    return {name: path for name, path in sites.items() if name in requested}


def publish_all(
    cfg: DeployConfig,
    storage: SiteStorage,
    only_sites: Optional[Iterable[str]] = None,
) -> Tuple[Dict[str, PublishResult], Dict[str, str]]:
    """
    사이트별로 publish_site 를 실행하고 모두 끝날 때까지 기다린다.
    한 사이트의 실패는 다른 사이트에 영향을 주지 않는다.

    Returns:
        results: 성공한 사이트 이름 -> PublishResult
        failed: 실패한 사이트 이름 -> 오류 메시지
    """
    sites = _filter_sites(discover_sites(cfg.sites_root), only_sites)
    logger.info("배포 대상 사이트: %s", list(sites))

    results: Dict[str, PublishResult] = {}
    failed: Dict[str, str] = {}

    with ThreadPoolExecutor(max_workers=cfg.site_workers) as executor:
        futures = {
            name: executor.submit(publish_site, cfg, storage, path)
            for name, path in sites.items()
        }
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:  # noqa: BLE001
                failed[name] = str(e)
                logger.exception("사이트 배포 실패: %s", name)

    return results, failed


def _format_results(title: str, cfg: DeployConfig, results: Dict[str, PublishResult]) -> List[str]:
    lines: List[str] = []
    lines.append(f"# {title}")
    lines.append(f"- project: {cfg.gcp_project_id}")
    lines.append(f"- sites_root: {cfg.sites_root}")
    lines.append("")

    lines.append("## Published sites")
    if not results:
        lines.append("- (none)")
    for name, result in results.items():
        lines.append(f"- {name}")
        lines.append(f"  - bucket: {result.base_url}")
        lines.append(f"  - objects: {result.object_count}")
        lines.append(f"  - endpoint: {result.entry_url or '(entry document 없음)'}")
    return lines


def deploy_all(
    cfg: DeployConfig,
    storage: SiteStorage,
    only_sites: Optional[Iterable[str]] = None,
) -> tuple[str, bool]:
    """
    모든 사이트를 배포하고 요약 텍스트를 만든다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: 하나 이상의 사이트에서 예외가 발생했는지 여부
    """
    results, failed = publish_all(cfg, storage, only_sites=only_sites)

    lines = _format_results("Deploy summary", cfg, results)
    lines.append("")
    lines.append("## Failed sites")
    if failed:
        for name, message in failed.items():
            lines.append(f"- {name}: {message}")
    else:
        lines.append("- (none)")

    return "\n".join(lines), bool(failed)


def plan_all(cfg: DeployConfig, only_sites: Optional[Iterable[str]] = None) -> tuple[str, bool]:
    """
    메모리 스토리지에 대해 배포를 흉내내고, 사이트별 object 이름 매핑을 출력한다.
    실제 GCP 호출은 하지 않는다.
    """
    storage = RecordingStorage()
    results, failed = publish_all(cfg, storage, only_sites=only_sites)

    lines: List[str] = []
    lines.append("# Deploy plan")
    lines.append(f"- project: {cfg.gcp_project_id}")
    lines.append(f"- sites_root: {cfg.sites_root}")
    lines.append(f"- location: {cfg.bucket_location}")
    lines.append(f"- scoped_rewrite: {cfg.scoped_rewrite}")
    lines.append("")

    for name, result in results.items():
        lines.append(f"## {name}")
        lines.append(f"- bucket: {result.bucket_name}")
        for original, final in result.rename_map.items():
            if original == final:
                lines.append(f"- {original}")
            else:
                lines.append(f"- {original} -> {final}")
        lines.append(f"- entry: {result.entry_object_name or '(none)'}")
        lines.append("")

    if failed:
        lines.append("## Failed sites")
        for name, message in failed.items():
            lines.append(f"- {name}: {message}")

    return "\n".join(lines).rstrip(), bool(failed)


def check_all(cfg: DeployConfig) -> tuple[str, bool]:
    """
    업로드 없이 사이트 디렉토리 상태를 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈(사이트 루트 없음, 이름 충돌 등)가 있는지 여부
    """
    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("# Deploy pre-check")
    lines.append(f"- sites_root: {cfg.sites_root}")
    lines.append("")

    try:
        sites = discover_sites(cfg.sites_root)
    except FileNotFoundError as e:
        sites = {}
        critical.append(str(e))

    if not sites and not critical:
        warnings.append(f"배포할 사이트 디렉토리가 없습니다: {cfg.sites_root}")

    strict_cfg = replace(cfg, fail_on_collision=True)

    for name, path in sites.items():
        tree = discover_site(path)
        bucket_name = cfg.bucket_name_for(name)

        if not (_BUCKET_NAME_MIN <= len(bucket_name) <= _BUCKET_NAME_MAX):
            critical.append(f"{name}: 버킷 이름 길이가 올바르지 않습니다 ({bucket_name})")

        if not tree.files:
            warnings.append(f"{name}: 파일이 없습니다")
            continue

        if find_entry_document(tree, cfg.entry_document) is None:
            warnings.append(f"{name}: {cfg.entry_document} 없음 (엔트리 URL 이 만들어지지 않습니다)")

        state = SiteState(tree=tree, bucket_name=bucket_name)
        try:
            state.records = [build_asset_record(s.relative_path, s.path) for s in tree.files]
            state.rename_map = build_rename_map(state.records, fail_on_collision=True)
            plan_entry(strict_cfg, state)
        except NameCollisionError as e:
            critical.append(f"{name}: {e}")
        except (OSError, ValueError) as e:
            critical.append(f"{name}: 파일을 읽을 수 없습니다 ({e})")

        lines.append(f"- {name}: bucket={bucket_name} files={len(tree.files)}")

    lines.append("")
    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (배포 가능 상태로 보입니다)")

    if critical:
        lines.append("")
        lines.append("### Critical issues")
        for i in critical:
            lines.append(f"- {i}")

    if warnings:
        lines.append("")
        lines.append("### Warnings")
        for i in warnings:
            lines.append(f"- {i}")

    return "\n".join(lines), bool(critical)
