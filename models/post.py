from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field


class Post(BaseModel):
    id: str
    title: str
    body: str = ""
    keywords: List[str] = []
    images: List[str] = []
    userId: str
    likes: List[str] = []
    commentIds: List[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PostWithRelations(Post):
    """Post with author and comment author display fields joined in"""
    user: Optional[Dict[str, Any]] = None
    comments: List[Dict[str, Any]] = []


class PostPage(BaseModel):
    posts: List[PostWithRelations]
    hasMorePages: bool


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    body: Optional[str] = None
    keywords: Optional[List[str]] = None


class PostUpdated(BaseModel):
    message: str
    post: Post


class CommentRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class Comment(BaseModel):
    id: str
    postId: str
    userId: str
    text: str
    created_at: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
