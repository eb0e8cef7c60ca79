"""
hashing
-------

캐시 버스팅용 콘텐츠 지문(token)을 계산하는 모듈.

SHA-256 다이제스트의 16진수 표현 앞 8자리만 사용한다.
같은 바이트는 항상 같은 token 을 만든다.
"""

from __future__ import annotations

import hashlib


TOKEN_LENGTH = 8

_CHUNK_SIZE = 64 * 1024


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:TOKEN_LENGTH]


def hash_file(path: str) -> str:
    """
    파일 전체를 스트리밍으로 읽어 token 을 계산한다.
    파일을 열 수 없으면 OSError 가 그대로 전파된다.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()[:TOKEN_LENGTH]
