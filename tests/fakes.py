import copy
import itertools
import re
from typing import Any, Dict, List, Optional, Tuple

from services.firestore import NotPostAuthorError


class FakeFirestore:
    """In-memory stand-in exposing the same methods as services.firestore.FirestoreDB"""

    def __init__(self):
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.comments: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def _now(self) -> str:
        return f"2026-01-01T00:00:00.{next(self._clock):06d}"

    def _user(self, user_id: str) -> Dict[str, Any]:
        return self.users.setdefault(user_id, {"postIds": [], "likesList": []})

    def add_user(self, user_id: str, username: str, avatar: Optional[str] = None):
        user = self._user(user_id)
        user.update({"username": username, "avatar": avatar})
        return user

    @staticmethod
    def _out(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {**copy.deepcopy(data), "id": doc_id}

    @staticmethod
    def _union(items: List[str], value: str):
        if value not in items:
            items.append(value)

    def create_post(self, user_id, title, body, keywords, images):
        post_id = f"post{next(self._ids)}"
        now = self._now()
        self.posts[post_id] = {
            "title": title,
            "body": body,
            "keywords": list(keywords),
            "images": list(images),
            "userId": user_id,
            "likes": [],
            "commentIds": [],
            "created_at": now,
            "updated_at": now,
        }
        self._union(self._user(user_id).setdefault("postIds", []), post_id)
        return self._out(post_id, self.posts[post_id])

    def get_post(self, post_id):
        if post_id not in self.posts:
            return None
        return self._out(post_id, self.posts[post_id])

    def update_post(self, post_id, author_id, changes):
        if post_id not in self.posts:
            return None
        if self.posts[post_id]["userId"] != author_id:
            raise NotPostAuthorError(post_id)
        self.posts[post_id].update(changes, updated_at=self._now())
        return self._out(post_id, self.posts[post_id])

    def delete_post(self, post_id, author_id) -> Optional[int]:
        post = self.posts.get(post_id)
        if post is None:
            return None
        if post["userId"] != author_id:
            raise NotPostAuthorError(post_id)
        del self.posts[post_id]
        doomed = [cid for cid, c in self.comments.items() if c["postId"] == post_id]
        for comment_id in doomed:
            del self.comments[comment_id]
        author = self._user(post["userId"])
        author["postIds"] = [pid for pid in author.get("postIds", []) if pid != post_id]
        for liker_id in post["likes"]:
            liker = self._user(liker_id)
            liker["likesList"] = [pid for pid in liker.get("likesList", []) if pid != post_id]
        return len(doomed)

    def count_posts(self) -> int:
        return len(self.posts)

    def get_posts_with_relations(self, limit, offset):
        ordered = sorted(self.posts.items(), key=lambda item: item[1]["created_at"], reverse=True)
        page = []
        for post_id, data in ordered[offset:offset + limit]:
            post = self._out(post_id, data)
            author = self.users.get(data["userId"])
            post["user"] = {"id": data["userId"], "username": author.get("username"),
                            "avatar": author.get("avatar")} if author else None
            post["comments"] = self.get_comments(post_id)
            page.append(post)
        return page

    def search_posts_by_title(self, pattern: re.Pattern):
        return [self._out(pid, p) for pid, p in self.posts.items() if pattern.search(p["title"])]

    def search_posts_by_keywords(self, keywords):
        wanted = set(keywords)
        return [self._out(pid, p) for pid, p in self.posts.items() if wanted & set(p["keywords"])]

    def like_post(self, post_id, user_id) -> Tuple[Optional[Dict[str, Any]], bool]:
        post = self.posts.get(post_id)
        if post is None:
            return None, False
        if user_id in post["likes"]:
            return self._out(post_id, post), False
        self._union(post["likes"], user_id)
        self._union(self._user(user_id).setdefault("likesList", []), post_id)
        return self._out(post_id, post), True

    def unlike_post(self, post_id, user_id):
        post = self.posts.get(post_id)
        if post is None:
            return None
        post["likes"] = [uid for uid in post["likes"] if uid != user_id]
        user = self._user(user_id)
        user["likesList"] = [pid for pid in user.get("likesList", []) if pid != post_id]
        return self._out(post_id, post)

    def add_comment(self, post_id, user_id, text):
        post = self.posts.get(post_id)
        if post is None:
            return None
        comment_id = f"comment{next(self._ids)}"
        self.comments[comment_id] = {
            "postId": post_id,
            "userId": user_id,
            "text": text,
            "created_at": self._now(),
        }
        self._union(post["commentIds"], comment_id)
        return self._out(comment_id, self.comments[comment_id])

    def get_comments(self, post_id):
        comments = []
        for comment_id, data in sorted(self.comments.items(), key=lambda item: item[1]["created_at"]):
            if data["postId"] != post_id:
                continue
            comment = self._out(comment_id, data)
            author = self.users.get(data["userId"])
            comment["user"] = {"username": author.get("username")} if author else None
            comments.append(comment)
        return comments
