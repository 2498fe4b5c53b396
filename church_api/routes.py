"""
HTTP routes for the content API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Header, HTTPException, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from church_api.config import Settings, get_settings
from church_api.content import (
    RESOURCE_KINDS,
    ContentService,
    ResourceKind,
    get_site_settings,
    replace_site_settings,
    utc_now_iso,
)
from church_api.dependencies import (
    get_content_store,
    get_current_user,
    get_identity_provider,
    get_storage_client,
)
from church_api.errors import IdentityError, MissingFieldsError, RecordNotFoundError
from church_api.identity import Identity, IdentityProvider, parse_bearer_token
from church_api.schemas import (
    CreateResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    SettingsResponse,
    SignupRequest,
    SignupResponse,
    SuccessResponse,
    UploadResponse,
    UserResponse,
)
from church_api.storage import StorageClient, build_object_name
from church_api.store import ContentStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/auth/signup", response_model=SignupResponse)
def signup(
    payload: SignupRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Create an admin account; it starts out confirmed."""
    try:
        user = identity.create_user(payload.email, payload.password, payload.name)
    except IdentityError as exc:
        logger.info("Signup rejected for %s: %s", payload.email, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    return SignupResponse(user=user.as_dict())


@router.post("/auth/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    try:
        token, user = identity.sign_in(payload.email, payload.password)
    except IdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    return LoginResponse(access_token=token, user=user.as_dict())


@router.get("/auth/user", response_model=UserResponse)
def current_user(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="No authorization token provided")
    user = identity.resolve(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return UserResponse(user=user.as_dict())


def _register_collection(resource: ResourceKind) -> None:
    """Attach list/create/update/delete routes for one resource kind."""

    def list_records(
        limit: Optional[int] = Query(None, ge=1, le=500),
        store: ContentStore = Depends(get_content_store),
    ):
        records = ContentService(store, resource).list(limit=limit)
        return {resource.collection: records}

    def create_record(
        payload: dict = Body(...),
        user: Identity = Depends(get_current_user),
        store: ContentStore = Depends(get_content_store),
    ):
        try:
            record_id = ContentService(store, resource).create(payload, user)
        except MissingFieldsError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return CreateResponse(id=record_id)

    def update_record(
        record_id: str,
        payload: dict = Body(...),
        user: Identity = Depends(get_current_user),
        store: ContentStore = Depends(get_content_store),
    ):
        try:
            ContentService(store, resource).update(record_id, payload, user)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        return SuccessResponse()

    def delete_record(
        record_id: str,
        user: Identity = Depends(get_current_user),
        store: ContentStore = Depends(get_content_store),
    ):
        ContentService(store, resource).delete(record_id, user)
        return SuccessResponse()

    path = f"/{resource.route}"
    tags = [resource.route]
    router.add_api_route(
        path, list_records, methods=["GET"], tags=tags,
        name=f"list_{resource.route}",
    )
    router.add_api_route(
        path, create_record, methods=["POST"], tags=tags,
        response_model=CreateResponse, name=f"create_{resource.kind}",
    )
    router.add_api_route(
        f"{path}/{{record_id}}", update_record, methods=["PUT"], tags=tags,
        response_model=SuccessResponse, name=f"update_{resource.kind}",
    )
    router.add_api_route(
        f"{path}/{{record_id}}", delete_record, methods=["DELETE"], tags=tags,
        response_model=SuccessResponse, name=f"delete_{resource.kind}",
    )


for _resource in RESOURCE_KINDS:
    _register_collection(_resource)


@router.get("/settings", response_model=SettingsResponse)
def read_settings(store: ContentStore = Depends(get_content_store)):
    return SettingsResponse(settings=get_site_settings(store))


@router.put("/settings", response_model=SuccessResponse)
def update_settings(
    payload: dict = Body(...),
    user: Identity = Depends(get_current_user),
    store: ContentStore = Depends(get_content_store),
):
    replace_site_settings(store, payload, user)
    return SuccessResponse()


def _file_too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=f"File size must be less than {limit / (1024 * 1024):g}MB",
    )


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile | None = File(None),
    user: Identity = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    limit = settings.upload_max_bytes
    if file.size is not None and file.size > limit:
        raise _file_too_large(limit)
    # Read at most one byte past the ceiling.
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise _file_too_large(limit)

    await run_in_threadpool(storage.ensure_bucket)
    path = build_object_name(file.filename)
    content_type = file.content_type or "application/octet-stream"
    await run_in_threadpool(storage.upload_bytes, path, data, content_type)
    url = await run_in_threadpool(
        storage.presign_get, path, settings.upload_url_expires_in
    )
    logger.info("Uploaded %s (%d bytes) by %s", path, len(data), user.id)
    return UploadResponse(url=url, path=path)


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=utc_now_iso())
