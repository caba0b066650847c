import re
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Tuple

import firebase_admin
from firebase_admin import firestore as fs
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

# Firestore caps 'in' / 'array-contains-any' filters, so lists are queried in chunks
QUERY_CHUNK_SIZE = 10


def _chunks(items: List[str], size: int = QUERY_CHUNK_SIZE) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _with_id(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    data["id"] = doc_id
    return data


class NotPostAuthorError(Exception):
    """Raised when a post is mutated by someone other than its author"""


class FirestoreDB:
    def __init__(self, app: firebase_admin.App):
        self.db = fs.client(app)

    def collection(self, name: str):
        return self.db.collection(name)

    # ─── posts ─────────────────────────────────────────────

    def create_post(
            self,
            user_id: str,
            title: str,
            body: str,
            keywords: List[str],
            images: List[str],
    ) -> Dict[str, Any]:
        """
        Create a post and register it in the author's postIds in one batched write
        """
        post_ref = self.collection("posts").document()
        now = datetime.now().isoformat()
        post_data = {
            "title": title,
            "body": body,
            "keywords": keywords,
            "images": images,
            "userId": user_id,
            "likes": [],
            "commentIds": [],
            "created_at": now,
            "updated_at": now,
        }

        batch = self.db.batch()
        batch.set(post_ref, post_data)
        batch.set(
            self.collection("users").document(user_id),
            {"postIds": firestore.ArrayUnion([post_ref.id])},
            merge=True,
        )
        batch.commit()

        return _with_id(post_ref.id, post_data)

    def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Get a post by ID"""
        snapshot = self.collection("posts").document(post_id).get()
        if not snapshot.exists:
            return None
        return _with_id(snapshot.id, snapshot.to_dict())

    def update_post(self, post_id: str, author_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Write the given fields onto a post owned by author_id and return the updated post.
        The author check reads the same snapshot the write is based on.

        :raises NotPostAuthorError: if author_id did not write the post
        """
        post_ref = self.collection("posts").document(post_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def update_in_transaction(transaction, post_ref):
            snapshot = post_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None

            post_data = snapshot.to_dict()
            if post_data.get("userId") != author_id:
                raise NotPostAuthorError(post_id)

            update = {**changes, "updated_at": datetime.now().isoformat()}
            transaction.update(post_ref, update)
            return _with_id(snapshot.id, {**post_data, **update})

        return update_in_transaction(transaction, post_ref)

    def delete_post(self, post_id: str, author_id: str) -> Optional[int]:
        """
        Delete a post together with its comments and every back-reference to it
        (author's postIds, likers' likesList). Runs as a single transaction.

        :return: the number of comments removed, or None if the post does not exist
        :raises NotPostAuthorError: if author_id did not write the post
        """
        post_ref = self.collection("posts").document(post_id)
        comments_query = self.collection("comments").where(
            filter=FieldFilter("postId", "==", post_id)
        )
        transaction = self.db.transaction()

        @firestore.transactional
        def delete_in_transaction(transaction, post_ref):
            snapshot = post_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None

            post_data = snapshot.to_dict()
            if post_data.get("userId") != author_id:
                raise NotPostAuthorError(post_id)

            # all reads must happen before the first write
            comment_refs = [doc.reference for doc in transaction.get(comments_query)]

            for comment_ref in comment_refs:
                transaction.delete(comment_ref)
            transaction.delete(post_ref)

            transaction.set(
                self.collection("users").document(post_data["userId"]),
                {"postIds": firestore.ArrayRemove([post_id])},
                merge=True,
            )
            for liker_id in post_data.get("likes", []):
                transaction.set(
                    self.collection("users").document(liker_id),
                    {"likesList": firestore.ArrayRemove([post_id])},
                    merge=True,
                )
            return len(comment_refs)

        return delete_in_transaction(transaction, post_ref)

    def count_posts(self) -> int:
        result = self.collection("posts").count().get()
        return int(result[0][0].value)

    def get_posts_page(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        """Get one page of posts sorted by creation date descending"""
        posts_ref = self.collection("posts") \
            .order_by("created_at", direction=firestore.Query.DESCENDING) \
            .offset(offset) \
            .limit(limit) \
            .stream()
        return [_with_id(doc.id, doc.to_dict()) for doc in posts_ref]

    def get_posts_with_relations(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        """
        Get one page of posts with the author's display fields and the comments
        (with their authors' usernames) joined in memory
        """
        posts = self.get_posts_page(limit, offset)
        if not posts:
            return []

        post_ids = [post["id"] for post in posts]
        comments_by_post = self.get_comments_for_posts(post_ids)

        user_ids = {post["userId"] for post in posts}
        for comments in comments_by_post.values():
            user_ids.update(comment["userId"] for comment in comments)
        users = self.get_users(list(user_ids))

        for post in posts:
            post["user"] = users.get(post["userId"])
            comments = comments_by_post.get(post["id"], [])
            for comment in comments:
                author = users.get(comment["userId"])
                comment["user"] = {"username": author.get("username")} if author else None
            post["comments"] = comments

        return posts

    def search_posts_by_title(self, pattern: re.Pattern) -> List[Dict[str, Any]]:
        """
        Return the posts whose title matches the compiled pattern.
        Firestore has no substring queries so titles are matched in memory.
        """
        results = []
        for doc in self.collection("posts").stream():
            data = doc.to_dict()
            if pattern.search(data.get("title", "") or ""):
                results.append(_with_id(doc.id, data))
        return results

    def search_posts_by_keywords(self, keywords: List[str]) -> List[Dict[str, Any]]:
        """Return posts whose keyword list contains any of the given keywords"""
        found: Dict[str, Dict[str, Any]] = {}
        for chunk in _chunks(keywords):
            posts_ref = self.collection("posts").where(
                filter=FieldFilter("keywords", "array_contains_any", chunk)
            ).stream()
            for doc in posts_ref:
                found.setdefault(doc.id, _with_id(doc.id, doc.to_dict()))
        return list(found.values())

    # ─── likes ─────────────────────────────────────────────

    def like_post(self, post_id: str, user_id: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """
        Add user_id to the post's likes and post_id to the user's likesList.

        The membership check and both writes share one transaction, which Firestore
        retries on contention, so concurrent likes cannot produce duplicates.

        :return: (post, liked) where post is None if it does not exist and liked is
                 False if the user had already liked it
        """
        post_ref = self.collection("posts").document(post_id)
        user_ref = self.collection("users").document(user_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def like_in_transaction(transaction, post_ref, user_ref):
            snapshot = post_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None, False

            post_data = snapshot.to_dict()
            likes = post_data.get("likes", [])
            if user_id in likes:
                return _with_id(snapshot.id, post_data), False

            transaction.update(post_ref, {"likes": firestore.ArrayUnion([user_id])})
            transaction.set(user_ref, {"likesList": firestore.ArrayUnion([post_id])}, merge=True)

            post_data["likes"] = likes + [user_id]
            return _with_id(snapshot.id, post_data), True

        return like_in_transaction(transaction, post_ref, user_ref)

    def unlike_post(self, post_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Remove the like from both sides. Unliking a post that was never liked is a no-op."""
        post_ref = self.collection("posts").document(post_id)
        user_ref = self.collection("users").document(user_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def unlike_in_transaction(transaction, post_ref, user_ref):
            snapshot = post_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None

            transaction.update(post_ref, {"likes": firestore.ArrayRemove([user_id])})
            transaction.set(user_ref, {"likesList": firestore.ArrayRemove([post_id])}, merge=True)

            post_data = snapshot.to_dict()
            post_data["likes"] = [uid for uid in post_data.get("likes", []) if uid != user_id]
            return _with_id(snapshot.id, post_data)

        return unlike_in_transaction(transaction, post_ref, user_ref)

    # ─── comments ──────────────────────────────────────────

    def add_comment(self, post_id: str, user_id: str, text: str) -> Optional[Dict[str, Any]]:
        """Add a comment to a post and append its id to the post's commentIds"""
        post_ref = self.collection("posts").document(post_id)
        comment_ref = self.collection("comments").document()
        transaction = self.db.transaction()

        @firestore.transactional
        def comment_in_transaction(transaction, post_ref):
            if not post_ref.get(transaction=transaction).exists:
                return None

            comment_data = {
                "postId": post_id,
                "userId": user_id,
                "text": text,
                "created_at": datetime.now().isoformat(),
            }
            transaction.set(comment_ref, comment_data)
            transaction.update(post_ref, {"commentIds": firestore.ArrayUnion([comment_ref.id])})
            return _with_id(comment_ref.id, comment_data)

        return comment_in_transaction(transaction, post_ref)

    def get_comments(self, post_id: str) -> List[Dict[str, Any]]:
        """Get comments for a post, oldest first, with the author's username"""
        comments_ref = self.collection("comments").where(
            filter=FieldFilter("postId", "==", post_id)
        ).order_by(
            "created_at", direction=firestore.Query.ASCENDING
        ).stream()

        comments = [_with_id(doc.id, doc.to_dict()) for doc in comments_ref]
        users = self.get_users(list({comment["userId"] for comment in comments}))
        for comment in comments:
            author = users.get(comment["userId"])
            comment["user"] = {"username": author.get("username")} if author else None
        return comments

    def get_comments_for_posts(self, post_ids: List[str]) -> Dict[str, List[Dict[str, Any]]]:
        """
        Batch fetch all comments for multiple posts
        Returns a dictionary mapping post_ids to lists of comments, oldest first
        """
        comments_by_post = {post_id: [] for post_id in post_ids}

        for chunk in _chunks(post_ids):
            comments_ref = self.collection("comments").where(
                filter=FieldFilter("postId", "in", chunk)
            ).stream()

            for doc in comments_ref:
                comment = _with_id(doc.id, doc.to_dict())
                post_id = comment.get("postId")
                if post_id in comments_by_post:
                    comments_by_post[post_id].append(comment)

        for comments in comments_by_post.values():
            comments.sort(key=lambda c: c.get("created_at", ""))
        return comments_by_post

    # ─── users ─────────────────────────────────────────────

    def get_users(self, user_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Batch fetch display fields (username, avatar) for the given users"""
        if not user_ids:
            return {}

        refs = [self.collection("users").document(uid) for uid in user_ids]
        users = {}
        for snapshot in self.db.get_all(refs):
            if snapshot.exists:
                data = snapshot.to_dict()
                users[snapshot.id] = {
                    "id": snapshot.id,
                    "username": data.get("username"),
                    "avatar": data.get("avatar"),
                }
        return users

