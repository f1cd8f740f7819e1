"""
Account API Routes

Endpoints for the signed-in account: settings, API keys, import schedules
and the full data export. Everything that mutates the account is session only.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.deps import (
    get_api_key_service,
    get_export_service,
    get_import_schedule_service,
    get_user_service,
)
from app.auth import credentials
from app.auth.gate import AuthContext, require_access
from app.schemas.account_models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ImportScheduleCreate,
    ImportScheduleResponse,
    ImportScheduleUpdate,
    UserResponse,
    UserSettingsUpdate,
)
from app.services.api_key_service import ApiKeyService
from app.services.export_service import ExportService
from app.services.import_schedule_service import ImportScheduleService
from app.services.user_service import UserService

router = APIRouter()

any_caller = require_access()
session_only = require_access(session_only=True)


def _user_response(user: dict, auth: AuthContext) -> UserResponse:
    return UserResponse(
        id=user["id"],
        email=user.get("email"),
        name=user.get("name"),
        default_currency=user.get("default_currency") or "USD",
        encryption_key_version=user.get("encryption_key_version") or 1,
        source=auth.source,
        scopes=credentials.scopes_to_strings(auth.scopes),
    )


# =============================================================================
# Current user
# =============================================================================


@router.get("/me", response_model=UserResponse)
def get_me(
    auth: AuthContext = Depends(any_caller),
    service: UserService = Depends(get_user_service),
):
    """Get the current user and how this request was authenticated."""
    return _user_response(service.get_user(auth.user_id), auth)


@router.patch("/me", response_model=UserResponse)
def update_me(
    payload: UserSettingsUpdate,
    auth: AuthContext = Depends(session_only),
    service: UserService = Depends(get_user_service),
):
    return _user_response(service.update_settings(auth.user_id, payload), auth)


@router.delete("/me")
def delete_me(
    auth: AuthContext = Depends(session_only),
    service: UserService = Depends(get_user_service),
) -> dict[str, bool]:
    """Delete the account and every record it owns."""
    service.delete_user(auth.user_id)
    return {"success": True}


# =============================================================================
# API keys
# =============================================================================


@router.get("/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    auth: AuthContext = Depends(session_only),
    service: ApiKeyService = Depends(get_api_key_service),
):
    return service.list_keys(auth.user_id)


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    payload: ApiKeyCreate,
    auth: AuthContext = Depends(session_only),
    service: ApiKeyService = Depends(get_api_key_service),
):
    """Issue a key. The token is shown once and cannot be retrieved again."""
    return service.create_key(auth.user_id, payload)


@router.delete("/api-keys/{key_id}", response_model=ApiKeyResponse)
def revoke_api_key(
    key_id: str,
    auth: AuthContext = Depends(session_only),
    service: ApiKeyService = Depends(get_api_key_service),
):
    return service.revoke_key(auth.user_id, key_id)


# =============================================================================
# Import schedules
# =============================================================================


@router.get("/import/schedules", response_model=list[ImportScheduleResponse])
def list_import_schedules(
    auth: AuthContext = Depends(session_only),
    service: ImportScheduleService = Depends(get_import_schedule_service),
):
    return service.list_schedules(auth.user_id)


@router.post("/import/schedules", response_model=ImportScheduleResponse, status_code=201)
def create_import_schedule(
    payload: ImportScheduleCreate,
    auth: AuthContext = Depends(session_only),
    service: ImportScheduleService = Depends(get_import_schedule_service),
):
    return service.create_schedule(auth.user_id, payload)


@router.patch("/import/schedules/{schedule_id}", response_model=ImportScheduleResponse)
def update_import_schedule(
    schedule_id: str,
    payload: ImportScheduleUpdate,
    auth: AuthContext = Depends(session_only),
    service: ImportScheduleService = Depends(get_import_schedule_service),
):
    return service.update_schedule(auth.user_id, schedule_id, payload)


@router.delete("/import/schedules/{schedule_id}")
def delete_import_schedule(
    schedule_id: str,
    auth: AuthContext = Depends(session_only),
    service: ImportScheduleService = Depends(get_import_schedule_service),
) -> dict[str, bool]:
    service.delete_schedule(auth.user_id, schedule_id)
    return {"success": True}


@router.post("/import/schedules/{schedule_id}/run", response_model=ImportScheduleResponse)
def run_import_schedule(
    schedule_id: str,
    auth: AuthContext = Depends(session_only),
    service: ImportScheduleService = Depends(get_import_schedule_service),
):
    return service.mark_run(auth.user_id, schedule_id)


# =============================================================================
# Export
# =============================================================================


@router.get("/export/account")
def export_account(
    auth: AuthContext = Depends(session_only),
    service: ExportService = Depends(get_export_service),
) -> Response:
    """Download every owned record, decrypted, as a zip archive."""
    archive = service.build_archive(auth.user_id)
    return Response(
        content=archive.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{archive.filename}"',
            "Cache-Control": "no-store",
        },
    )
