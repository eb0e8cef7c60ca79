"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 site_deploy_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.
repo root 를 sys.path 최상단에 고정한다.

write_site 픽스처는 {상대경로: 내용} dict 로 사이트 디렉토리를 만든다.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Dict, Union

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


SiteFiles = Dict[str, Union[str, bytes]]


@pytest.fixture
def sites_root(tmp_path: Path) -> Path:
    root = tmp_path / "websites"
    root.mkdir()
    return root


@pytest.fixture
def write_site(sites_root: Path) -> Callable[[str, SiteFiles], Path]:
    def _write(name: str, files: SiteFiles) -> Path:
        site_dir = sites_root / name
        site_dir.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            path = site_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return site_dir

    return _write
