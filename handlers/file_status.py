"""
Tuning File API

Customer upload flow, operator updates (status, estimate, price, payment,
notes), modified-file delivery and downloads. Fulfillment errors propagate
to the app-level handler, which maps them to HTTP codes.
"""

import asyncio
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from database import managed_session
from models import User
from services.service_context import ServiceContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files")


class StatusUpdateRequest(BaseModel):
    status: Literal["RECEIVED", "PENDING", "READY"]
    estimatedProcessingTime: Optional[int] = Field(None, ge=5, le=60)


class EstimateRequest(BaseModel):
    estimatedProcessingTime: int = Field(..., ge=5, le=60)


class UploadRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    fileSize: int = Field(..., gt=0)
    contentType: Optional[str] = None
    modificationIds: List[int] = Field(default_factory=list)
    customerComment: Optional[str] = Field(None, max_length=2000)
    dtcCodes: Optional[str] = Field(None, max_length=500)


class ModifiedFileRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    fileSize: int = Field(..., gt=0)
    contentType: Optional[str] = None


class PriceRequest(BaseModel):
    price: float = Field(..., ge=0, le=99999999.99)


class PaymentStatusRequest(BaseModel):
    paymentStatus: Literal["PENDING", "PAID", "REFUNDED"]


class AdminNotesRequest(BaseModel):
    adminNotes: str = Field("", max_length=2000)


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_acting_user(
    context: ServiceContext = Depends(get_context),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> User:
    """Caller identity as asserted by the upstream authentication gateway"""
    if not x_user_id or not x_user_id.isdigit():
        raise HTTPException(status_code=401, detail="Authentication required")
    with managed_session(context.session_factory) as session:
        user = session.get(User, int(x_user_id))
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


@router.post("/upload-request")
async def request_upload(
    body: UploadRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    ticket = await asyncio.to_thread(
        context.file_status.request_upload,
        user,
        body.filename,
        body.fileSize,
        body.contentType,
        modification_ids=body.modificationIds,
        customer_comment=body.customerComment,
        dtc_codes=body.dtcCodes,
    )
    return {"success": True, **ticket.to_dict()}


@router.post("/{file_id}/confirm-upload")
async def confirm_upload(
    file_id: str,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.confirm_upload(file_id, user)
    return {"success": True, "file": snapshot.to_dict()}


@router.patch("/{file_id}/status")
async def update_status(
    file_id: str,
    body: StatusUpdateRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.transition(
        file_id, body.status, user, estimate_minutes=body.estimatedProcessingTime
    )
    return {"success": True, "file": snapshot.to_dict()}


@router.post("/{file_id}/estimate")
async def set_estimate(
    file_id: str,
    body: EstimateRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.set_estimate(file_id, body.estimatedProcessingTime, user)
    return {"success": True, "file": snapshot.to_dict()}


@router.post("/{file_id}/modified")
async def attach_modified_file(
    file_id: str,
    body: ModifiedFileRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    ticket = await context.file_status.attach_modified_file(
        file_id, body.filename, body.fileSize, body.contentType, user
    )
    return {"success": True, **ticket.to_dict()}


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    kind: Literal["original", "modified"] = Query("modified"),
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    link = await asyncio.to_thread(context.file_status.download_url, file_id, user, kind)
    return {"success": True, **link.to_dict()}


@router.post("/{file_id}/modified/confirm")
async def confirm_modified_file(
    file_id: str,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.confirm_modified_upload(file_id, user)
    return {"success": True, "file": snapshot.to_dict()}


@router.post("/{file_id}/price")
async def set_price(
    file_id: str,
    body: PriceRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.set_price(file_id, body.price, user)
    return {"success": True, "file": snapshot.to_dict()}


@router.post("/{file_id}/payment")
async def set_payment_status(
    file_id: str,
    body: PaymentStatusRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.set_payment_status(file_id, body.paymentStatus, user)
    return {"success": True, "file": snapshot.to_dict()}


@router.post("/{file_id}/notes")
async def set_admin_notes(
    file_id: str,
    body: AdminNotesRequest,
    context: ServiceContext = Depends(get_context),
    user: User = Depends(get_acting_user),
):
    snapshot = await context.file_status.set_admin_notes(file_id, body.adminNotes, user)
    return {"success": True, "file": snapshot.to_dict()}
