"""
site_deploy_kit
---------------

정적 웹사이트 번들을 GCS 버킷에 배포하는 CLI 패키지.
CSS/JS 자산에 콘텐츠 해시를 붙여 캐시를 무효화하고,
index.html 안의 참조를 새 이름으로 바꾼 뒤 업로드하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "hashing",
    "naming",
    "rewriter",
    "publisher",
    "orchestrator",
]
