import logging
from typing import Annotated

from fastapi import Request, Depends, HTTPException
from firebase_admin import auth

from config import settings
from models.user import User
from services.firestore import FirestoreDB
from services.posts import PostService
from services.s3 import S3Service

logger = logging.getLogger(__name__)


async def get_current_user(request: Request) -> User:
    """
    Verify Firebase ID token from Authorization header and return user info
    """
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header"
        )

    token = authorization.split("Bearer ")[1]
    try:
        # Verify the Firebase ID token
        decoded_token = auth.verify_id_token(token, check_revoked=True, clock_skew_seconds=10)
    except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as e:
        logger.warning("Invalid authentication token: %s", e)
        raise HTTPException(
            status_code=401,
            detail=f"Invalid authentication token: {str(e)}"
        )
    except auth.CertificateFetchError:
        logger.exception("Could not fetch Firebase public key certificates")
        raise HTTPException(
            status_code=503,
            detail="Authentication service unavailable"
        )

    return User(
        user_id=decoded_token["uid"],
        email=decoded_token.get("email"),
    )


async def get_s3_service(request: Request) -> S3Service:
    """Get S3 service from app state"""
    return request.app.state.s3_service


async def get_firestore(request: Request) -> FirestoreDB:
    """ Get Firestore DB from app state """
    return request.app.state.firestore


CurrentUser = Annotated[User, Depends(get_current_user)]
S3 = Annotated[S3Service, Depends(get_s3_service)]
Firestore = Annotated[FirestoreDB, Depends(get_firestore)]


async def get_post_service(db: Firestore, s3: S3) -> PostService:
    """Build the post service over the app's Firestore and S3 clients"""
    return PostService(db, s3, max_image_size_mb=settings.max_image_size_mb)


Posts = Annotated[PostService, Depends(get_post_service)]
