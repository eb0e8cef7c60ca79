"""
storage
-------

사이트 배포가 사용하는 object storage 협력자.

배포 파이프라인은 아래 세 가지 기능만 필요로 한다.
- create_bucket     : 정적 웹사이트 호스팅용 버킷 준비
- put_object        : 파일을 object 이름/콘텐츠 타입/Cache-Control 과 함께 업로드
- grant_public_read : 버킷 단위 공개 읽기 권한 부여

GcsStorage 는 실제 GCS 에, RecordingStorage 는 메모리에 기록한다(plan/테스트용).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from google.api_core.exceptions import ServiceUnavailable
from google.cloud import storage

from .logging_utils import get_logger


logger = get_logger(__name__)


PUBLIC_READ_ROLE = "roles/storage.objectViewer"
PUBLIC_MEMBERS = ("allUsers",)


class SiteStorage(Protocol):
    def create_bucket(
        self,
        name: str,
        *,
        location: str,
        main_page_suffix: str,
        uniform_access: bool = True,
    ) -> None:
        ...

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        source_path: str,
        *,
        content_type: str,
        cache_control: str,
    ) -> None:
        ...

    def grant_public_read(
        self,
        bucket_name: str,
        role: str = PUBLIC_READ_ROLE,
        members: Iterable[str] = PUBLIC_MEMBERS,
    ) -> None:
        ...


class GcsStorage:
    """
    google-cloud-storage 기반 구현.

    재시도/타임아웃은 클라이언트 라이브러리의 기본 정책을 그대로 따른다.
    """

    def __init__(self, project_id: str, client: Optional[storage.Client] = None) -> None:
        self._client = client or storage.Client(project=project_id)
        self._buckets: Dict[str, storage.Bucket] = {}
        self._lock = threading.Lock()

    def _bucket(self, name: str) -> storage.Bucket:
        with self._lock:
            bucket = self._buckets.get(name)
            if bucket is None:
                bucket = self._client.bucket(name)
                self._buckets[name] = bucket
            return bucket

    def create_bucket(
        self,
        name: str,
        *,
        location: str,
        main_page_suffix: str,
        uniform_access: bool = True,
    ) -> None:
        """
        버킷이 있으면 웹사이트 설정만 갱신하고, 없으면 생성한다.
        """
        bucket = self._client.bucket(name)

        if bucket.exists():
            logger.info("기존 GCS 버킷을 사용합니다: %s", name)
            bucket.reload()
            bucket.configure_website(main_page_suffix=main_page_suffix)
            bucket.iam_configuration.uniform_bucket_level_access_enabled = uniform_access
            bucket.patch()
        else:
            bucket.configure_website(main_page_suffix=main_page_suffix)
            bucket.iam_configuration.uniform_bucket_level_access_enabled = uniform_access
            bucket = self._client.create_bucket(bucket, location=location)
            logger.info("GCS 버킷을 생성했습니다: %s (location=%s)", name, location)

        with self._lock:
            self._buckets[name] = bucket

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        source_path: str,
        *,
        content_type: str,
        cache_control: str,
    ) -> None:
        blob = self._bucket(bucket_name).blob(object_name)
        blob.cache_control = cache_control
        blob.upload_from_filename(source_path, content_type=content_type)
        logger.debug("업로드: gs://%s/%s (%s)", bucket_name, object_name, content_type)

    def grant_public_read(
        self,
        bucket_name: str,
        role: str = PUBLIC_READ_ROLE,
        members: Iterable[str] = PUBLIC_MEMBERS,
    ) -> None:
        bucket = self._bucket(bucket_name)
        wanted = set(members)

        policy = bucket.get_iam_policy(requested_policy_version=3)
        for binding in policy.bindings:
            if binding["role"] == role:
                if wanted.issubset(binding["members"]):
                    logger.info("공개 읽기 권한이 이미 있습니다: %s", bucket_name)
                    return
                binding["members"] = set(binding["members"]) | wanted
                break
        else:
            policy.bindings.append({"role": role, "members": wanted})

        bucket.set_iam_policy(policy)
        logger.info("공개 읽기 권한 부여: %s (%s -> %s)", bucket_name, role, ", ".join(sorted(wanted)))


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    cache_control: str


@dataclass
class RecordedBucket:
    location: str
    main_page_suffix: str
    uniform_access: bool
    bindings: Dict[str, Set[str]] = field(default_factory=dict)


class RecordingStorage:
    """
    메모리에 버킷/object 를 기록하는 구현. 실제 GCP 호출은 하지 않는다.

    fail_objects 에 들어 있는 object 이름은 업로드 시 ServiceUnavailable 을 던진다.
    """

    def __init__(self, fail_objects: Iterable[str] = ()) -> None:
        self.buckets: Dict[str, RecordedBucket] = {}
        self.objects: Dict[Tuple[str, str], StoredObject] = {}
        self.calls: List[Tuple[str, str]] = []
        self._fail_objects = set(fail_objects)
        self._lock = threading.Lock()

    def create_bucket(
        self,
        name: str,
        *,
        location: str,
        main_page_suffix: str,
        uniform_access: bool = True,
    ) -> None:
        with self._lock:
            self.calls.append(("create_bucket", name))
            self.buckets[name] = RecordedBucket(
                location=location,
                main_page_suffix=main_page_suffix,
                uniform_access=uniform_access,
            )

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        source_path: str,
        *,
        content_type: str,
        cache_control: str,
    ) -> None:
        if object_name in self._fail_objects:
            raise ServiceUnavailable(f"실패하도록 지정된 object 입니다: {object_name}")
        with open(source_path, "rb") as f:
            data = f.read()
        with self._lock:
            if bucket_name not in self.buckets:
                raise ValueError(f"생성되지 않은 버킷입니다: {bucket_name}")
            self.calls.append(("put_object", f"{bucket_name}/{object_name}"))
            self.objects[(bucket_name, object_name)] = StoredObject(
                data=data,
                content_type=content_type,
                cache_control=cache_control,
            )

    def grant_public_read(
        self,
        bucket_name: str,
        role: str = PUBLIC_READ_ROLE,
        members: Iterable[str] = PUBLIC_MEMBERS,
    ) -> None:
        with self._lock:
            self.calls.append(("grant_public_read", bucket_name))
            bindings = self.buckets[bucket_name].bindings
            bindings.setdefault(role, set()).update(members)

    def object_names(self, bucket_name: str) -> List[str]:
        with self._lock:
            return sorted(name for (b, name) in self.objects if b == bucket_name)
