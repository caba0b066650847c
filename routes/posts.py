from typing import List, Optional

from fastapi import APIRouter, Form, UploadFile, File, Query

from dependencies import Posts, CurrentUser
from models.post import Post, PostPage, PostUpdate, PostUpdated, CommentRequest, Comment
from services.posts import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT

router = APIRouter()


@router.post("", status_code=201, response_model=Post)
async def create_post(
        posts: Posts,
        current_user: CurrentUser,
        title: str = Form(..., min_length=1, max_length=200),
        keywords: str = Form(...),
        body: str = Form(""),
        images: Optional[List[UploadFile]] = File(None),
):
    """Create a post with comma-delimited keywords and optional images"""
    return await posts.create(current_user.user_id, title, body, keywords, images)


@router.get("", response_model=PostPage)
def get_posts(
        posts: Posts,
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
):
    """Get one page of posts, newest first"""
    return posts.get_all(page=page, limit=limit)


@router.get("/search", response_model=List[Post])
def get_posts_by_keywords(posts: Posts, keywords: Optional[str] = None):
    """Get posts tagged with any of the comma-delimited keywords"""
    return posts.get_by_keywords(keywords)


@router.get("/title/{title}", response_model=List[Post])
def get_posts_by_title(posts: Posts, title: str):
    """Case-insensitive title substring search"""
    return posts.get_by_title(title)


@router.get("/{post_id}", response_model=Post)
def get_post(posts: Posts, post_id: str):
    return posts.get_by_id(post_id)


@router.put("/{post_id}", response_model=PostUpdated)
def update_post(posts: Posts, post_id: str, changes: PostUpdate, current_user: CurrentUser):
    """Update title, body or keywords of a post (author only)"""
    post = posts.update(post_id, current_user.user_id, changes)
    return {"message": "Post updated successfully!", "post": post}


@router.delete("/{post_id}")
def delete_post(posts: Posts, post_id: str, current_user: CurrentUser):
    """Delete a post and its comments (author only)"""
    posts.delete(post_id, current_user.user_id)
    return {"message": "Post deleted successfully"}


@router.post("/{post_id}/like", response_model=Post)
def like_post(posts: Posts, post_id: str, current_user: CurrentUser):
    return posts.like(post_id, current_user.user_id)


@router.post("/{post_id}/unlike", response_model=Post)
def unlike_post(posts: Posts, post_id: str, current_user: CurrentUser):
    return posts.unlike(post_id, current_user.user_id)


@router.post("/{post_id}/comments", status_code=201, response_model=Comment)
def add_comment(posts: Posts, post_id: str, comment: CommentRequest, current_user: CurrentUser):
    """Add a comment to a post"""
    return posts.add_comment(post_id, current_user.user_id, comment.text)


@router.get("/{post_id}/comments", response_model=List[Comment])
def get_comments(posts: Posts, post_id: str):
    return posts.get_comments(post_id)
