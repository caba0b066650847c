import logging
import re
from contextlib import contextmanager
from typing import List, Dict, Any, Optional

import bleach
from botocore.exceptions import ClientError
from fastapi import HTTPException, UploadFile
from google.api_core.exceptions import GoogleAPIError
from starlette.concurrency import run_in_threadpool

from models.post import PostUpdate
from services.firestore import FirestoreDB, NotPostAuthorError
from services.s3 import S3Service

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 3
MAX_PAGE_LIMIT = 50
MAX_TITLE_SEARCH_LENGTH = 20


def parse_keywords(raw: Optional[str]) -> List[str]:
    """
    Split a comma-delimited keyword string ("a, b,c") into a clean list,
    keeping order and dropping empty entries
    """
    if not raw:
        return []
    return [keyword.strip() for keyword in raw.split(",") if keyword.strip()]


def page_offset(page: int, limit: int) -> int:
    """Number of posts to skip for a 1-based page"""
    return (max(page, 1) - 1) * limit


def title_pattern(title: str) -> re.Pattern:
    """Case-insensitive substring pattern with every metacharacter of the input escaped"""
    return re.compile(re.escape(title), re.IGNORECASE)


def sanitize(text: str) -> str:
    return bleach.clean(text, strip=True)


@contextmanager
def store_errors(message: str):
    """Log store/storage failures and surface them as a 500 with the given message"""
    try:
        yield
    except (GoogleAPIError, ClientError):
        logger.exception(message)
        raise HTTPException(status_code=500, detail=message)


class PostService:
    def __init__(self, db: FirestoreDB, s3: S3Service, max_image_size_mb: int = 5):
        self.db = db
        self.s3 = s3
        self.max_image_size_mb = max_image_size_mb

    async def create(
            self,
            user_id: str,
            title: str,
            body: str,
            keywords: str,
            images: Optional[List[UploadFile]] = None,
    ) -> Dict[str, Any]:
        """
        Create a post for user_id, uploading its images first

        :param keywords: comma-delimited keyword string
        :return: the stored post
        """
        image_keys = []
        for image in images or []:
            image_keys.append(await self.s3.upload_image(image, user_id, self.max_image_size_mb))

        with store_errors("There was a problem creating the post"):
            post = await run_in_threadpool(
                self.db.create_post,
                user_id=user_id,
                title=sanitize(title),
                body=sanitize(body),
                keywords=parse_keywords(keywords),
                images=image_keys,
            )

        logger.info("User %s created post %s", user_id, post["id"])
        return post

    @contextmanager
    def _author_only(self, post_id: str, user_id: str, action: str):
        try:
            yield
        except NotPostAuthorError:
            logger.warning("User %s may not %s post %s", user_id, action, post_id)
            raise HTTPException(status_code=403, detail=f"Only the author can {action} this post")

    def update(self, post_id: str, user_id: str, changes: PostUpdate) -> Dict[str, Any]:
        """Apply whitelisted field changes to a post owned by user_id"""
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "title" in fields:
            fields["title"] = sanitize(fields["title"])
        if "body" in fields:
            fields["body"] = sanitize(fields["body"])
        if "keywords" in fields:
            fields["keywords"] = [k.strip() for k in fields["keywords"] if k.strip()]

        with store_errors("There was a problem updating the post"), \
                self._author_only(post_id, user_id, "update"):
            updated = self.db.update_post(post_id, user_id, fields)

        if updated is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return updated

    def delete(self, post_id: str, user_id: str) -> None:
        """Delete a post owned by user_id together with its comments and back-references"""
        with store_errors("Error trying to remove the post"), \
                self._author_only(post_id, user_id, "delete"):
            removed_comments = self.db.delete_post(post_id, user_id)

        if removed_comments is None:
            raise HTTPException(status_code=404, detail="Post not found")
        logger.info("User %s deleted post %s and %d comments", user_id, post_id, removed_comments)

    def get_all(self, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> Dict[str, Any]:
        """One page of posts, newest first, with authors and comments joined"""
        limit = min(limit, MAX_PAGE_LIMIT)
        with store_errors("There was a problem getting the posts"):
            posts = self.db.get_posts_with_relations(limit=limit, offset=page_offset(page, limit))
            total = self.db.count_posts()

        return {"posts": posts, "hasMorePages": total > page * limit}

    def get_by_id(self, post_id: str) -> Dict[str, Any]:
        with store_errors("There was a problem getting the post by id"):
            post = self.db.get_post(post_id)
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return post

    def get_by_title(self, title: str) -> List[Dict[str, Any]]:
        if len(title) > MAX_TITLE_SEARCH_LENGTH:
            raise HTTPException(status_code=400, detail="Search too long")

        with store_errors("There was a problem getting the post by title"):
            return self.db.search_posts_by_title(title_pattern(title))

    def get_by_keywords(self, keywords: Optional[str]) -> List[Dict[str, Any]]:
        wanted = parse_keywords(keywords)
        if not wanted:
            raise HTTPException(status_code=400, detail="Please provide keywords for the search.")

        with store_errors("There was a problem getting posts with keywords"):
            return self.db.search_posts_by_keywords(wanted)

    def like(self, post_id: str, user_id: str) -> Dict[str, Any]:
        with store_errors("There was a problem liking the post"):
            post, liked = self.db.like_post(post_id, user_id)

        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        if not liked:
            raise HTTPException(status_code=400, detail="You already liked this post")

        logger.info("User %s liked post %s", user_id, post_id)
        return post

    def unlike(self, post_id: str, user_id: str) -> Dict[str, Any]:
        with store_errors("There was a problem unliking the post"):
            post = self.db.unlike_post(post_id, user_id)

        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return post

    def add_comment(self, post_id: str, user_id: str, text: str) -> Dict[str, Any]:
        with store_errors("There was a problem adding the comment"):
            comment = self.db.add_comment(post_id, user_id, sanitize(text))

        if comment is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return comment

    def get_comments(self, post_id: str) -> List[Dict[str, Any]]:
        with store_errors("There was a problem getting the comments"):
            if self.db.get_post(post_id) is None:
                raise HTTPException(status_code=404, detail="Post not found")
            return self.db.get_comments(post_id)
