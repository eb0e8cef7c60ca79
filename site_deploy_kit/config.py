from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, List

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.sites"]

DEFAULT_CACHE_CONTROL = "public, max-age=0, no-cache, no-store, must-revalidate"


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_int(name: str, default: int, invalid: List[str]) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        invalid.append(name)
        return default
    if value < 1:
        invalid.append(name)
        return default
    return value


@dataclass
class DeployConfig:
    # 필수 공통
    gcp_project_id: str

    # 사이트 소스
    sites_root: str = "websites"
    entry_document: str = "index.html"

    # 버킷 설정
    bucket_location: str = "US"
    # None 이면 프로젝트 ID 를 prefix 로 쓴다. 빈 문자열이면 prefix 없이 사이트 이름만 쓴다.
    bucket_prefix: Optional[str] = None
    main_page_suffix: str = "index.html"
    public_url_root: str = "http://storage.googleapis.com"
    cache_control: str = DEFAULT_CACHE_CONTROL

    # 동시성
    upload_workers: int = 8
    site_workers: int = 1

    # 토글
    scoped_rewrite: bool = False
    fail_on_collision: bool = True
    public_read: bool = True

    def bucket_name_for(self, site_name: str) -> str:
        """
        사이트 이름으로 버킷 이름을 만든다. 기본 prefix 는 프로젝트 ID 다.
        GCS 가 허용하지 않는 문자는 '-' 로 치환한다.
        """
        prefix = self.gcp_project_id if self.bucket_prefix is None else self.bucket_prefix
        raw = f"{prefix}-{site_name}" if prefix else site_name
        cleaned = "".join(
            ch if (ch.isascii() and (ch.isalnum() or ch in "._-")) else "-"
            for ch in raw.lower()
        )
        return cleaned.strip("-._")

    def public_base_url(self, bucket_name: str) -> str:
        return f"{self.public_url_root.rstrip('/')}/{bucket_name}"

    @classmethod
    def from_env(cls) -> "DeployConfig":
        # 필수값
        missing: List[str] = []
        invalid: List[str] = []

        def req(name: str) -> str:
            val = os.getenv(name)
            if not val:
                missing.append(name)
            return val or ""

        cfg = cls(
            gcp_project_id=req("GCP_PROJECT_ID"),
            sites_root=os.getenv("SITES_ROOT", "websites"),
            entry_document=os.getenv("ENTRY_DOCUMENT", "index.html"),
            bucket_location=os.getenv("BUCKET_LOCATION", "US"),
            bucket_prefix=os.getenv("BUCKET_PREFIX"),
            main_page_suffix=os.getenv("MAIN_PAGE_SUFFIX", "index.html"),
            public_url_root=os.getenv("PUBLIC_URL_ROOT", "http://storage.googleapis.com"),
            cache_control=os.getenv("CACHE_CONTROL", DEFAULT_CACHE_CONTROL),
            upload_workers=_get_int("UPLOAD_WORKERS", 8, invalid),
            site_workers=_get_int("SITE_WORKERS", 1, invalid),
            scoped_rewrite=_get_bool("SCOPED_REWRITE", False),
            fail_on_collision=_get_bool("FAIL_ON_COLLISION", True),
            public_read=_get_bool("PUBLIC_READ", True),
        )

        if missing:
            raise ValueError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        if invalid:
            raise ValueError(
                "1 이상의 정수여야 하는 환경변수가 잘못되었습니다: "
                + ", ".join(sorted(set(invalid)))
            )

        return cfg
