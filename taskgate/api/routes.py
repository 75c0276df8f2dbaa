from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Header, Request, Response, UploadFile

from taskgate.api.schemas import (
    AdminUserCreateRequest,
    AdminUserUpdateRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ShareRequest,
    TaskRequest,
    TaskUpdateRequest,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    success_envelope,
    task_payload,
    user_payload,
)
from taskgate.config import Settings
from taskgate.logging import get_logger
from taskgate.service.auth import AuthContext
from taskgate.service.container import Container, get_container
from taskgate.service.credentials import Credential
from taskgate.service.errors import UnauthenticatedError, ValidationError
from taskgate.service.guard import require_role
from taskgate.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None),
    container: Container = Depends(get_container),
) -> AuthContext:
    """Resolve the caller from the credential cookie, Bearer header or X-Auth-Token."""
    cookie_value = request.cookies.get(container.settings.credential_cookie_name)
    ctx = await container.auth.authenticate(cookie_value, authorization, x_auth_token)
    if ctx is None:
        raise UnauthenticatedError()
    request.state.auth = ctx
    return ctx


def require_roles(*roles: Role):
    """Dependency factory gating a route on the caller's role."""

    async def _dependency(ctx: AuthContext = Depends(get_current_user)) -> AuthContext:
        require_role(ctx.user, *roles)
        return ctx

    return _dependency


def _apply_credential_cookie(
    response: Response, settings: Settings, credential: Credential
) -> None:
    response.set_cookie(
        settings.credential_cookie_name,
        credential.value,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=credential.max_age_seconds,
        path="/",
    )


def _clear_credential_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.credential_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _credential_response(
    response: Response, settings: Settings, user, credential: Credential
) -> dict:
    _apply_credential_cookie(response, settings, credential)
    return success_envelope(user_payload(user), token=credential.value)


# auth


@router.post("/auth/register")
async def register(
    body: RegisterRequest,
    response: Response,
    container: Container = Depends(get_container),
):
    user, credential = await container.auth.register(body.name, body.email, body.password)
    return _credential_response(response, container.settings, user, credential)


@router.post("/auth/login")
async def login(
    body: LoginRequest,
    response: Response,
    container: Container = Depends(get_container),
):
    user, credential = await container.auth.login(body.email, body.password)
    return _credential_response(response, container.settings, user, credential)


@router.api_route("/auth/logout", methods=["GET", "POST"])
async def logout(
    request: Request,
    response: Response,
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None),
    container: Container = Depends(get_container),
):
    settings = container.settings
    raw = container.auth.extract_credential(
        request.cookies.get(settings.credential_cookie_name), authorization, x_auth_token
    )
    await container.auth.logout(raw)
    logger.info("logout", had_credential=raw is not None)
    _clear_credential_cookie(response, settings)
    return success_envelope({})


@router.get("/auth/me")
async def me(ctx: AuthContext = Depends(get_current_user)):
    return success_envelope(user_payload(ctx.user))


@router.put("/auth/updatedetails")
async def update_details(
    body: UpdateDetailsRequest,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    user = await container.auth.update_details(ctx.user, name=body.name, email=body.email)
    return success_envelope(user_payload(user))


@router.put("/auth/updatepassword")
async def update_password(
    body: UpdatePasswordRequest,
    response: Response,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    credential = await container.auth.rotate_password(
        ctx.user, body.current_password, body.new_password, ctx.credential
    )
    return _credential_response(response, container.settings, ctx.user, credential)


@router.post("/auth/forgotpassword")
async def forgot_password(
    body: ForgotPasswordRequest,
    container: Container = Depends(get_container),
):
    reset_url_base = f"{container.settings.app_base_url.rstrip('/')}/api/auth/resetpassword"
    await container.auth.request_password_reset(body.email, reset_url_base)
    return success_envelope("Email sent")


@router.put("/auth/resetpassword/{token}")
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    response: Response,
    container: Container = Depends(get_container),
):
    user, credential = await container.auth.reset_password(token, body.password)
    return _credential_response(response, container.settings, user, credential)


@router.put("/auth/updateavatar")
async def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    if avatar is None:
        raise ValidationError("Please upload a file")
    # at most limit + 1 bytes
    data = await avatar.read(container.settings.max_upload_bytes + 1)
    user = await container.auth.update_avatar(ctx.user, avatar.content_type, data)
    return success_envelope(user_payload(user))


# tasks


@router.get("/tasks")
async def list_tasks(
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    tasks = container.tasks.list_visible(ctx.user)
    return success_envelope([task_payload(t) for t in tasks], count=len(tasks))


@router.post("/tasks", status_code=201)
async def create_task(
    body: TaskRequest,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    task = container.tasks.create(ctx.user, **body.model_dump())
    return success_envelope(task_payload(task))


@router.delete("/tasks/reset")
async def reset_tasks(
    ctx: AuthContext = Depends(require_roles(Role.ADMIN)),
    container: Container = Depends(get_container),
):
    removed = container.tasks.reset_all(ctx.user)
    return success_envelope({"deleted": removed})


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    return success_envelope(task_payload(container.tasks.get(ctx.user, task_id)))


@router.put("/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdateRequest,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    changes = body.model_dump(exclude_unset=True)
    task = container.tasks.update(ctx.user, task_id, **changes)
    return success_envelope(task_payload(task))


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    container.tasks.delete(ctx.user, task_id)
    return success_envelope({})


@router.put("/tasks/{task_id}/share")
async def share_task(
    task_id: str,
    body: ShareRequest,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    task = container.tasks.share(
        ctx.user, task_id, user_ids=body.user_ids, is_public=body.is_public
    )
    return success_envelope(task_payload(task))


@router.put("/tasks/{task_id}/toggle-public")
async def toggle_task_public(
    task_id: str,
    ctx: AuthContext = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    task = container.tasks.toggle_public(ctx.user, task_id)
    return success_envelope({"id": task.id, "is_public": task.is_public})


# admin user management

admin_only = require_roles(Role.ADMIN)


@router.get("/users", dependencies=[Depends(admin_only)])
async def list_users(container: Container = Depends(get_container)):
    users = container.users.list_users()
    return success_envelope([user_payload(u) for u in users], count=len(users))


@router.post("/users", status_code=201, dependencies=[Depends(admin_only)])
async def create_user(
    body: AdminUserCreateRequest,
    container: Container = Depends(get_container),
):
    user = await container.users.create(body.name, body.email, body.password, body.role)
    return success_envelope(user_payload(user))


@router.get("/users/{user_id}", dependencies=[Depends(admin_only)])
async def get_user_by_id(user_id: str, container: Container = Depends(get_container)):
    return success_envelope(user_payload(container.users.get(user_id)))


@router.put("/users/{user_id}", dependencies=[Depends(admin_only)])
async def update_user(
    user_id: str,
    body: AdminUserUpdateRequest,
    container: Container = Depends(get_container),
):
    user = await container.users.update(
        user_id, name=body.name, email=body.email, role=body.role
    )
    return success_envelope(user_payload(user))


@router.delete("/users/{user_id}", dependencies=[Depends(admin_only)])
async def delete_user(user_id: str, container: Container = Depends(get_container)):
    await container.users.delete(user_id)
    return success_envelope({})
