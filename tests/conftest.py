import os

import boto3
import pytest
from botocore.stub import Stubber
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_ENSURE_BUCKET_ON_STARTUP", "false")

import facility_portal.models  # noqa: F401
from facility_portal.core.config import settings
from facility_portal.core.deps import get_db
from facility_portal.db.base import Base
from facility_portal.main import app
from facility_portal.services.storage_service import StorageService, s3_client_config


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_invite_mode = settings.team_invite_mode
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.team_invite_mode = original_invite_mode


@pytest.fixture()
def s3_stub():
    s3_client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
        config=s3_client_config(),
    )
    stubber = Stubber(s3_client)
    stubber.activate()
    storage = StorageService(s3_client, bucket="user-uploads")
    try:
        yield storage, stubber
    finally:
        stubber.deactivate()
