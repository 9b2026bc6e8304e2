"""
S3 兼容对象存储客户端（Cloudflare R2 / AWS S3 / MinIO）
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from .exceptions import StorageOperationException
from .utils.time_utils import ensure_utc


@dataclass(frozen=True)
class StorageObject:
    """存储桶中的一个对象"""

    key: str
    size: int
    last_modified: datetime  # UTC


@dataclass(frozen=True)
class MultipartUpload:
    """进行中的分片上传"""

    key: str
    upload_id: str
    initiated: datetime  # UTC


def _to_utc(value: Optional[datetime]) -> datetime:
    """boto3 返回带时区的时间，统一转为 UTC"""
    if value is None:
        return datetime(1970, 1, 1, tzinfo=timezone.utc)
    return ensure_utc(value)


class S3StorageClient:
    """
    基于 boto3 的对象存储客户端

    boto3 为同步 SDK，所有调用都通过 asyncio.to_thread 放入线程执行，
    避免阻塞事件循环
    """

    def __init__(
        self,
        bucket: str,
        endpoint: Optional[str] = None,
        region: str = "auto",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ):
        """
        Args:
            bucket: 存储桶名称
            endpoint: S3 兼容服务的 Endpoint
            region: 区域
            access_key_id: 访问密钥 ID
            secret_access_key: 访问密钥
            client: 预先构造的 boto3 客户端（可选，用于依赖注入）
        """
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=region,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            config=BotoConfig(retries={"max_attempts": 3, "mode": "standard"}),
        )
        logger.info(f"Initialized S3 storage client for bucket: {bucket}")

    # ========== 对象 ==========

    async def list_objects(self, prefix: str = "") -> List[StorageObject]:
        """
        列出对象（自动翻页）

        Args:
            prefix: 键前缀过滤

        Returns:
            StorageObject 列表
        """
        return await asyncio.to_thread(self._list_objects_sync, prefix)

    def _list_objects_sync(self, prefix: str) -> List[StorageObject]:
        objects: List[StorageObject] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(
                Bucket=self.bucket, Prefix=prefix, PaginationConfig={"PageSize": 1000}
            ):
                for item in page.get("Contents", []):
                    objects.append(
                        StorageObject(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=_to_utc(item.get("LastModified")),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 list failed (prefix={prefix!r}): {e}")
            raise StorageOperationException("list", prefix or None, str(e)) from e

        return objects

    async def delete_object(self, key: str) -> None:
        """删除对象（对不存在的键幂等）"""
        await asyncio.to_thread(self._delete_object_sync, key)

    def _delete_object_sync(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 delete failed: s3://{self.bucket}/{key}: {e}")
            raise StorageOperationException("delete", key, str(e)) from e

    # ========== 分片上传 ==========

    async def list_multipart_uploads(self) -> List[MultipartUpload]:
        """列出进行中的分片上传（自动翻页）"""
        return await asyncio.to_thread(self._list_multipart_uploads_sync)

    def _list_multipart_uploads_sync(self) -> List[MultipartUpload]:
        uploads: List[MultipartUpload] = []
        try:
            paginator = self.client.get_paginator("list_multipart_uploads")
            for page in paginator.paginate(Bucket=self.bucket):
                for item in page.get("Uploads", []):
                    uploads.append(
                        MultipartUpload(
                            key=item["Key"],
                            upload_id=item["UploadId"],
                            initiated=_to_utc(item.get("Initiated")),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 list multipart uploads failed: {e}")
            raise StorageOperationException("list_multipart_uploads", None, str(e)) from e

        return uploads

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """中止分片上传"""
        await asyncio.to_thread(self._abort_multipart_upload_sync, key, upload_id)

    def _abort_multipart_upload_sync(self, key: str, upload_id: str) -> None:
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id
            )
        except ClientError as e:
            # 上传已不存在视为成功
            if e.response.get("Error", {}).get("Code") == "NoSuchUpload":
                logger.debug(f"Multipart upload already gone: {key} ({upload_id})")
                return
            logger.error(f"S3 abort multipart failed: {key} ({upload_id}): {e}")
            raise StorageOperationException("abort_multipart_upload", key, str(e)) from e
        except BotoCoreError as e:
            raise StorageOperationException("abort_multipart_upload", key, str(e)) from e
