"""
# Family Routes

HTTP surface of the family registry, mounted under `/family`.

| Method & path | Purpose |
|---|---|
| `POST /family/create` | create a group; the caller becomes its admin |
| `GET /family/my-groups` | groups the caller belongs to |
| `GET /family/invitations/pending` | the caller's invitation inbox |
| `POST /family/accept-invitation/{token}` | join via an invitation |
| `POST /family/reject-invitation/{token}` | decline an invitation |
| `GET /family/{group_id}` | group details (members only) |
| `PUT /family/{group_id}` | update name, description and settings (admins) |
| `DELETE /family/{group_id}` | archive (creator only) |
| `POST /family/{group_id}/invite` | invite by email |
| `POST /family/{group_id}/invitations/{invitation_id}/resend` | refresh token and expiry |
| `DELETE /family/{group_id}/invitations/{key}` | cancel by invitation id or token |
| `DELETE /family/{group_id}/members/{user_id}` | remove a member or leave |
| `PUT /family/{group_id}/members/{user_id}/role` | change a member's role |

Static paths are declared before `/{group_id}` so they are never captured as a group id.
Registry errors propagate to the application's exception handlers, which render the failure
envelope.
"""

from fastapi import APIRouter, Depends

from document_vault.managers.family_manager import FamilyManager
from document_vault.managers.logging_manager import get_logger
from document_vault.models.auth_models import Principal
from document_vault.models.family_models import (
    CreateFamilyGroupRequest,
    InviteMemberRequest,
    UpdateFamilyGroupRequest,
    UpdateMemberRoleRequest,
)
from document_vault.routes.auth.dependencies import get_current_principal
from document_vault.routes.dependencies import get_family_manager

logger = get_logger(prefix="[FamilyRoutes]")

router = APIRouter(prefix="/family", tags=["Family"])


def _invitation_view(invitation) -> dict:
    # Tokens only travel to the invitee through the notifier
    return invitation.model_dump(mode="json", exclude={"invitation_token"})


@router.post("/create", status_code=201)
async def create_family_group(
    payload: CreateFamilyGroupRequest,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    """
    Create a new family group.

    Args:
        payload: Name, optional description and optional settings.

    Returns:
        dict: The created group as seen by its creator.
    """
    group = await family.create_group(principal, payload.name, payload.description, payload.settings)
    return {"success": True, "group": family.project_group(group, principal.user_id)}


@router.get("/my-groups")
async def get_my_family_groups(
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    groups = await family.list_my_groups(principal)
    summaries = [family.summarize_group(group, principal.user_id) for group in groups]
    return {"success": True, "groups": summaries, "count": len(summaries)}


@router.get("/invitations/pending")
async def get_pending_invitations(
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    """Pending, unexpired invitations addressed to the caller's email, newest first."""
    invitations = await family.list_pending_invitations(principal)
    return {"success": True, "invitations": invitations, "count": len(invitations)}


@router.post("/accept-invitation/{token}")
async def accept_invitation(
    token: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    """
    Accept an invitation.

    The caller's verified email must match the invited email.

    Raises:
        INVITATION_NOT_FOUND (404): unknown token or the invitation is no longer pending.
        INVITATION_EXPIRED (410): past `expires_at`; the invitation is marked expired.
        EMAIL_MISMATCH (400): the caller is not the invitee.
    """
    group, member = await family.accept(principal, token)
    return {
        "success": True,
        "group": family.project_group(group, principal.user_id),
        "member": member.model_dump(mode="json"),
    }


@router.post("/reject-invitation/{token}")
async def reject_invitation(
    token: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    group = await family.reject(principal, token)
    return {"success": True, "group_id": group.group_id, "message": "Invitation declined"}


@router.get("/{group_id}")
async def get_family_group(
    group_id: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    group = await family.get_group(principal, group_id)
    return {"success": True, "group": family.project_group(group, principal.user_id)}


@router.put("/{group_id}")
async def update_family_group(
    group_id: str,
    payload: UpdateFamilyGroupRequest,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    group = await family.update_settings(
        principal, group_id, name=payload.name, description=payload.description, group_settings=payload.settings
    )
    return {"success": True, "group": family.project_group(group, principal.user_id)}


@router.delete("/{group_id}")
async def archive_family_group(
    group_id: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    """Archive the group. Only its creator may do this; archived groups become read-only."""
    group = await family.archive(principal, group_id)
    return {"success": True, "group_id": group.group_id, "status": group.status}


@router.post("/{group_id}/invite", status_code=201)
async def invite_family_member(
    group_id: str,
    payload: InviteMemberRequest,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    invitation = await family.invite(principal, group_id, payload.email, payload.role)
    return {"success": True, "invitation": _invitation_view(invitation)}


@router.post("/{group_id}/invitations/{invitation_id}/resend")
async def resend_invitation(
    group_id: str,
    invitation_id: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    invitation = await family.resend_invitation(principal, group_id, invitation_id)
    return {"success": True, "invitation": _invitation_view(invitation)}


@router.delete("/{group_id}/invitations/{key}")
async def cancel_invitation(
    group_id: str,
    key: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    removed = await family.cancel_invitation(principal, group_id, key)
    return {"success": True, "removed": removed}


@router.delete("/{group_id}/members/{user_id}")
async def remove_family_member(
    group_id: str,
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    """
    Remove a member, or leave the group when `user_id` is the caller.

    Documents already shared with the group keep the removed member's access until the group
    share is revoked.
    """
    removed = await family.remove_member(principal, group_id, user_id)
    return {"success": True, "removed": removed}


@router.put("/{group_id}/members/{user_id}/role")
async def update_member_role(
    group_id: str,
    user_id: str,
    payload: UpdateMemberRoleRequest,
    principal: Principal = Depends(get_current_principal),
    family: FamilyManager = Depends(get_family_manager),
):
    group = await family.update_role(principal, group_id, user_id, payload.role)
    return {"success": True, "group": family.project_group(group, principal.user_id)}
