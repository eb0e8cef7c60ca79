import os
import sys
from typing import Optional

import click

from .config import load_env_files, DeployConfig
from .logging_utils import setup_logging, get_logger
from .orchestrator import check_all, deploy_all, discover_sites, plan_all
from .storage import GcsStorage


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 GCP 클라이언트 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """정적 사이트를 캐시 버스팅하여 GCS 버킷에 배포하는 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> DeployConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = DeployConfig.from_env()
    # 상대 경로의 SITES_ROOT 는 작업 디렉토리 기준으로 해석한다.
    if not os.path.isabs(cfg.sites_root):
        cfg.sites_root = os.path.join(base_dir, cfg.sites_root)
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _parse_only(cfg: DeployConfig, only: str) -> Optional[list[str]]:
    if not only.strip():
        return None

    only_list = [p.strip() for p in only.split(",") if p.strip()]

    # --only 사이트 이름 검증
    try:
        known = list(discover_sites(cfg.sites_root))
    except FileNotFoundError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    invalid = sorted({s for s in only_list if s not in known})
    if invalid:
        click.echo(
            "[ERROR] 잘못된 사이트 이름이 있습니다: "
            + ", ".join(invalid)
            + f"\n배포 가능한 사이트: {', '.join(known) or '(none)'}",
            err=True,
        )
        sys.exit(1)
    return only_list


_ONLY_HELP = "쉼표로 구분된 사이트 이름. 기본 동작은 SITES_ROOT 아래의 모든 사이트입니다."


@main.command()
@click.option("--only", "only", type=str, default="", help=_ONLY_HELP)
@click.pass_context
def plan(ctx: click.Context, only: str) -> None:
    """업로드 없이 사이트별 object 이름 매핑과 엔트리 문서 이름을 출력"""
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    only_list = _parse_only(cfg, only)

    try:
        report, has_failures = plan_all(cfg, only_sites=only_list)
    except Exception as e:  # noqa: BLE001
        logger.exception("plan 중 오류 발생")
        click.echo(f"[ERROR] plan 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    if has_failures:
        sys.exit(1)


@main.command(name="deploy")
@click.option("--only", "only", type=str, default="", help=_ONLY_HELP)
@click.pass_context
def deploy(ctx: click.Context, only: str) -> None:
    """사이트를 GCS 버킷에 실제로 업로드하여 배포"""
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    only_list = _parse_only(cfg, only)

    try:
        storage = GcsStorage(cfg.gcp_project_id)
        summary, has_failures = deploy_all(cfg, storage, only_sites=only_list)
    except Exception as e:  # noqa: BLE001
        logger.exception("배포 중 오류 발생")
        click.echo(f"[ERROR] 배포 실패: {e}", err=True)
        sys.exit(1)

    click.echo(summary)

    # 사이트 단위 실패가 있었다면 전체 명령은 실패(exit 1)로 간주
    if has_failures:
        sys.exit(1)


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """
    배포 전에 사이트 디렉토리 상태를 점검한다.
    (버킷 생성/업로드는 하지 않는다)
    """
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    try:
        report, has_issues = check_all(cfg)
    except Exception as e:  # noqa: BLE001
        logger.exception("점검 중 오류 발생")
        click.echo(f"[ERROR] 점검 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    # 치명적인 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)
