"""
Object storage for chat room images and message attachments.

Clients upload straight to the bucket through presigned URLs, the server
only signs uploads and removes objects that are no longer referenced.
"""

import aioboto3
import logging

from typing import Any, Optional
from contextlib import AsyncExitStack
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from chat_serv.config import settings


MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


class S3API:
    """S3 client kept open between startup and shutdown."""

    def __init__(self):
        self.logger = logging.getLogger("s3-api")
        self.logger.setLevel(settings.logging_level)

        self.session: Optional[aioboto3.Session] = None
        self.client: Any = None
        self._exit_stack: Optional[AsyncExitStack] = None

        self.endpoint_url = settings.s3_endpoint_url
        self.bucket_name = settings.s3_bucket_name

    async def connect(self) -> None:
        """Open session and client."""

        self.session = aioboto3.Session(
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
        )

        # presigned uploads need SigV4, path style is for self-hosted stores
        client_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": settings.s3_addressing_style},
        )

        self._exit_stack = AsyncExitStack()
        self.client = await self._exit_stack.enter_async_context(self.session.client(
            service_name="s3",
            endpoint_url=self.endpoint_url,
            verify=settings.s3_verify_ssl,
            config=client_config,
        ))

    async def safely_connect(self) -> None:
        """Connect and make sure the bucket is reachable.

        Raises:
            RuntimeError: If the bucket cannot be reached with given credentials
        """

        await self.connect()

        if not await self.ping():
            await self.disconnect()

            self.logger.critical(
                f"S3 bucket '{self.bucket_name}' is not reachable, check access keys and endpoint.")
            raise RuntimeError(f"S3 bucket '{self.bucket_name}' is not reachable")

        self.logger.info(f"S3 connected, bucket '{self.bucket_name}'")

    async def disconnect(self) -> None:
        if self._exit_stack:
            await self._exit_stack.aclose()

        self._exit_stack = None
        self.client = None
        self.session = None

    async def ping(self) -> bool:
        """Check that the bucket is reachable."""

        try:
            await self.client.head_bucket(Bucket=self.bucket_name)
            return True

        except (ClientError, BotoCoreError) as e:
            self.logger.warning(f"S3 head_bucket failed: {e}")
            return False

    async def delete_file(self, key: str) -> bool:
        """
        Delete object. A missing object counts as deleted.

        Returns:
            False if the store refused or could not be reached
        """

        try:
            await self.client.delete_object(Bucket=self.bucket_name, Key=key)

        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_OBJECT_CODES:
                return True

            self.logger.warning(f"S3 delete failed for key {key}: {e}")
            return False

        except BotoCoreError as e:
            self.logger.warning(f"S3 delete failed for key {key}: {e}")
            return False

        self.logger.debug(f"S3 object {key} deleted")
        return True

    async def generate_upload_url(
        self,
        key: str,
        content_type: str,
        expires_in: int = 900,
    ) -> str:
        """
        Sign a PUT the client uses to upload the object itself.

        The client has to send the same Content-Type header.

        Raises:
            ClientError, BotoCoreError: If the URL cannot be signed
        """

        return await self.client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self.bucket_name,
                "Key": key,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )
