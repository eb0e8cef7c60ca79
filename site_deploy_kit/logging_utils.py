import logging
import sys


# 구글 클라이언트 라이브러리는 DEBUG 에서 요청 단위 로그를 쏟아내므로 -vv 에서만 연다.
_NOISY_LOGGERS = ("google", "urllib3", "google.auth", "google.resumable_media")


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )

    library_level = logging.DEBUG if verbosity >= 2 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
