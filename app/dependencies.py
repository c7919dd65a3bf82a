from fastapi import Request

from app.core.config import Settings
from app.services.accounts import AccountService
from app.services.content_store import ContentStore
from app.services.metadata_store import MetadataStore
from app.services.retrieval import RetrievalService
from app.services.uploads import UploadService


# The store, settings and content store live on app.state for the process lifetime
def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_metadata_store(request: Request) -> MetadataStore:
    return request.app.state.metadata


def get_content_store(request: Request) -> ContentStore:
    return request.app.state.content_store


def get_account_service(request: Request) -> AccountService:
    return AccountService(get_metadata_store(request))


def get_upload_service(request: Request) -> UploadService:
    settings = get_settings_dep(request)
    return UploadService(get_metadata_store(request), get_content_store(request), settings.hash_uploads)


def get_retrieval_service(request: Request) -> RetrievalService:
    return RetrievalService(get_metadata_store(request), get_content_store(request))
