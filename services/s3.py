import logging
import os
import uuid
from datetime import datetime

import boto3
from botocore.exceptions import ClientError
from fastapi import UploadFile, HTTPException

logger = logging.getLogger(__name__)


class S3Service:
    def __init__(self, bucket_name: str, client: boto3.client):
        """
        Initialize the S3 service with bucket name and client
        """
        self.bucket_name = bucket_name
        self.s3 = client

    async def upload_image(self, file: UploadFile, user_id: str, max_size_mb: int = 5) -> str:
        """
        Upload a post image to S3 with user ownership metadata

        Args:
            file: The image to upload
            user_id: The ID of the user uploading the image
            max_size_mb: Maximum file size in MB

        Returns:
            The unique S3 key for the uploaded image

        Raises:
            HTTPException: If the file is not an image, is too large, or the upload fails
        """
        content_type = file.content_type or ""
        if not content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="Only image files are supported")

        file_content = await file.read()
        if len(file_content) > max_size_mb * 1024 * 1024:
            raise HTTPException(
                status_code=400,
                detail=f"File size exceeds {max_size_mb}MB limit"
            )

        # Key includes the user ID to keep ownership visible
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        extension = os.path.splitext(file.filename or "")[1].lower()
        key = f"posts/{user_id}/{timestamp}-{uuid.uuid4()}{extension}"

        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=file_content,
                ContentType=content_type,
                Metadata={
                    'user_id': user_id
                }
            )
        except ClientError:
            logger.exception("S3 upload failed for %s", key)
            raise HTTPException(status_code=500, detail="Failed to upload image")

        return key
