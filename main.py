import logging
from contextlib import asynccontextmanager

import boto3
import firebase_admin
from botocore.config import Config
from fastapi import FastAPI
from firebase_admin import credentials
from starlette.middleware.cors import CORSMiddleware

from config import settings
from logging_config import setup_logging
from routes.posts import router as posts_router
from services.firestore import FirestoreDB
from services.s3 import S3Service

setup_logging(settings.log_level, settings.log_file)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Firebase Admin SDK
    cred = credentials.Certificate(settings.firebase_credentials)
    firebase_app = firebase_admin.initialize_app(cred)

    # S3 client
    s3_client = boto3.client(
        's3',
        aws_access_key_id=settings.aws_access_key_id or None,
        aws_secret_access_key=settings.aws_secret_access_key or None,
        region_name=settings.aws_region,
        config=Config(signature_version="s3v4")
    )

    app.state.firestore = FirestoreDB(firebase_app)
    app.state.s3_service = S3Service(settings.bucket_name, s3_client)
    logger.info("Firestore and S3 clients ready")

    yield
    # Cleanup resources
    firebase_admin.delete_app(firebase_app)


app = FastAPI(lifespan=lifespan)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(posts_router, prefix="/posts", tags=["posts"])
