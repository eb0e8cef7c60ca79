"""
rewriter
--------

엔트리 HTML 안의 자산 참조를 최종 object 이름으로 바꾸고,
루트 절대 경로(/assets/...)를 문서 상대 경로(./assets/...)로 바꾸는 순수 텍스트 변환.

파일시스템/네트워크 접근은 하지 않는다.
"""

from __future__ import annotations

import posixpath
import re
from typing import Dict, Iterable, List, Mapping, Tuple

from .naming import normalize_path


# scoped 모드에서 치환 대상이 되는 문맥: 태그 안의 따옴표로 감싼 속성 값, CSS url(...)
# 태그는 따옴표 안의 `>` 를 건너뛴다.
_TAG = re.compile(r"""<[A-Za-z][^>"']*(?:(?:"[^"]*"|'[^']*')[^>"']*)*>""")
_ATTRIBUTE_VALUE = re.compile(
    r"""(?P<head>=\s*)(?P<quote>["'])(?P<value>.*?)(?P=quote)""",
    re.DOTALL,
)
_CSS_URL = re.compile(
    r"""(?P<head>url\(\s*)(?P<quote>["']?)(?P<value>[^"'()]*?)(?P=quote)(?P<tail>\s*\))""",
    re.IGNORECASE,
)


def _filename_pairs(rename_map: Mapping[str, str]) -> List[Tuple[str, str]]:
    """
    바뀐 항목만 골라 (원본 파일명, 최종 파일명) 쌍을 만든다. 경로의 마지막 세그먼트만 쓴다.
    """
    pairs: List[Tuple[str, str]] = []
    for original, final in rename_map.items():
        if original == final:
            continue
        pairs.append(
            (
                posixpath.basename(normalize_path(original)),
                posixpath.basename(normalize_path(final)),
            )
        )
    return pairs


def substitute_filenames(html: str, rename_map: Mapping[str, str]) -> str:
    """
    문서 전체에서 원본 파일명을 최종 파일명으로 그대로(literal) 치환한다.
    관련 없는 텍스트에 같은 파일명이 있으면 그것도 바뀐다.
    """
    for old, new in _filename_pairs(rename_map):
        html = html.replace(old, new)
    return html


def substitute_filenames_scoped(html: str, rename_map: Mapping[str, str]) -> str:
    """
    태그 안의 속성 값과 url(...) 안에서, 파일명 전체가 하나의 경로 세그먼트로 등장할 때만 치환한다.
    같은 파일명이 여러 디렉토리에 있으면 먼저 나온 매핑을 쓴다.
    """
    replacements: Dict[str, str] = {}
    for old, new in _filename_pairs(rename_map):
        replacements.setdefault(old, new)
    if not replacements:
        return html

    alternation = "|".join(
        re.escape(old) for old in sorted(replacements, key=len, reverse=True)
    )
    segment = re.compile(rf"(?<![\w.\-])(?:{alternation})(?![\w.\-])")

    def _replace_value(match: "re.Match[str]") -> str:
        text = match.group(0)
        value = segment.sub(lambda m: replacements[m.group(0)], match.group("value"))
        start = match.start("value") - match.start()
        end = match.end("value") - match.start()
        return text[:start] + value + text[end:]

    def _replace_tag(match: "re.Match[str]") -> str:
        return _ATTRIBUTE_VALUE.sub(_replace_value, match.group(0))

    html = _TAG.sub(_replace_tag, html)
    return _CSS_URL.sub(_replace_value, html)


def relocalize_paths(html: str, directories: Iterable[str]) -> str:
    """
    따옴표/공백 바로 뒤에 오는 `/{dir}` 를 `./{dir}` 로 바꾼다.
    뒤에 '/', 따옴표, 공백이 올 때만 바꾸므로 `/assets-backup` 같은 부분 일치는 건드리지 않는다.
    """
    for directory in sorted(set(directories)):
        if not directory:
            continue
        pattern = re.compile(rf"""(?<=['"\s])/{re.escape(directory)}(?=[/'"\s])""")
        replacement = f"./{directory}"
        html = pattern.sub(lambda _m: replacement, html)
    return html


def rewrite(
    html: str,
    rename_map: Mapping[str, str],
    directories: Iterable[str],
    scoped: bool = False,
) -> str:
    """
    1) 파일명 치환, 2) 절대 경로 상대화 순서로 적용한다.
    """
    if scoped:
        html = substitute_filenames_scoped(html, rename_map)
    else:
        html = substitute_filenames(html, rename_map)
    return relocalize_paths(html, directories)
