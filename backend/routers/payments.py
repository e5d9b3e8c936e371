from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging

from database import get_db
from crud import payments as crud_payments
from exceptions import ConsistencyError, PaymentError
from models.payment_status import PaymentStatus
from schemas.payments import (
    DueDateUpdate,
    InvoiceResult,
    ManualInvoiceCreate,
    ManualPaymentCreate,
    Payment,
    PaymentDetail,
    PaymentOpen,
    PaymentResult,
    PaymentStatusUpdate,
    ProofAttach,
    ProofUploadRequest,
)
from utils import s3_utils
from utils.auth_utils import get_current_user, get_user_identifier, require_group

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger("payments")


def _http_error(e: PaymentError) -> HTTPException:
    """Translate a domain error; every body says whether anything was changed."""
    if isinstance(e, ConsistencyError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Internal server error", "changed": False},
        )
    logger.warning(f"Payment request rejected ({e.status_code}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/", response_model=List[Payment])
def list_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    registration_id: Optional[int] = None,
    program_id: Optional[int] = Query(None, alias="program"),
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """List payments, newest first. Filters: status code, registration, program, free-text search, creation date range."""
    payment_status = None
    if status_filter and status_filter != "all":
        try:
            payment_status = PaymentStatus.from_code(status_filter)
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), "changed": False})
    return crud_payments.list_payments(
        db,
        status=payment_status,
        registration_id=registration_id,
        program_id=program_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )


@router.post("/", response_model=Payment, status_code=status.HTTP_201_CREATED)
def open_payment(
    request_body: PaymentOpen,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin"])),
):
    """Open the pending payment for a newly created registration."""
    try:
        return crud_payments.open_payment(db, request_body.registration_id, get_user_identifier(user), notes=request_body.notes)
    except PaymentError as e:
        raise _http_error(e)


@router.post("/manual", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
def create_manual_payment(
    request_body: ManualPaymentCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin"])),
):
    """Record a manual (cash or direct transfer) payment for a registration."""
    try:
        return crud_payments.create_manual_payment(db, request_body, get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)


@router.get("/{payment_id}", response_model=PaymentDetail)
def read_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Retrieve a payment with its full history and installment progress."""
    try:
        return crud_payments.get_payment_with_history(db, payment_id)
    except PaymentError as e:
        raise _http_error(e)


@router.post("/{payment_id}/create-invoice", response_model=InvoiceResult)
def create_invoice(
    payment_id: int,
    invoice: ManualInvoiceCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin"])),
):
    """Issue the invoice for the next installment (cicilan)."""
    try:
        return crud_payments.issue_manual_invoice(db, payment_id, invoice, get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)


@router.put("/{payment_id}/due-date", response_model=Payment)
def update_due_date(
    payment_id: int,
    update: DueDateUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin"])),
):
    """Issue the bill for the current installment by setting its due date."""
    try:
        return crud_payments.issue_due_date(db, payment_id, update, get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)


@router.put("/{payment_id}/status", response_model=PaymentResult)
def update_payment_status(
    payment_id: int,
    update: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin"])),
):
    """Verify a payment: add the paid amount and move the payment to the requested status."""
    try:
        return crud_payments.record_payment(db, payment_id, update, get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)


@router.put("/{payment_id}/proof", response_model=Payment)
def attach_proof(
    payment_id: int,
    request_body: ProofAttach,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Record the stored path of an uploaded proof-of-payment image."""
    try:
        return crud_payments.attach_proof(db, payment_id, request_body.proof_image, get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)


@router.post("/{payment_id}/proof-upload-url")
def get_proof_upload_url(
    payment_id: int,
    request_body: ProofUploadRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Get a pre-signed URL for uploading a proof-of-payment image."""
    if not s3_utils.is_configured():
        logger.warning(f"Proof upload requested for payment {payment_id} but S3 is not configured. Raising 501.")
        raise HTTPException(status_code=501, detail="S3 upload functionality is not configured.")

    if crud_payments.get_payment(db, payment_id) is None:
        logger.warning(f"Payment with ID {payment_id} not found. Raising 404.")
        raise HTTPException(status_code=404, detail={"message": "Payment not found", "changed": False})

    try:
        upload_data = s3_utils.generate_presigned_upload_url(payment_id=payment_id, filename=request_body.filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "changed": False})
    except RuntimeError as e:
        logger.exception(f"Failed to generate presigned URL for payment {payment_id}")
        raise HTTPException(status_code=500, detail=f"Failed to generate upload URL: {str(e)}")

    try:
        crud_payments.attach_proof(db, payment_id, upload_data["s3_path"], get_user_identifier(user))
    except PaymentError as e:
        raise _http_error(e)

    return {
        "upload_url": upload_data["upload_url"],
        "s3_path": upload_data["s3_path"],
        "message": "Bukti pembayaran berhasil diupload dan menunggu verifikasi admin",
    }


@router.get("/{payment_id}/proof-download-url")
def get_proof_download_url(
    payment_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Get a pre-signed URL for downloading the proof-of-payment image."""
    if not s3_utils.is_configured():
        raise HTTPException(status_code=501, detail="S3 download functionality is not configured.")

    db_payment = crud_payments.get_payment(db, payment_id)
    if not db_payment or not db_payment.proof_image:
        logger.warning(f"Payment {payment_id} has no proof image recorded. Raising 404.")
        raise HTTPException(status_code=404, detail="Proof image not found")

    if not db_payment.proof_image.startswith('s3://'):
        raise HTTPException(status_code=400, detail="Proof image is not stored in S3.")

    try:
        download_url = s3_utils.generate_presigned_download_url(s3_path=db_payment.proof_image)
        return {"download_url": download_url}
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ValueError, RuntimeError) as e:
        logger.exception(f"Failed to generate download URL for payment {payment_id}")
        raise HTTPException(status_code=500, detail=f"Failed to generate download URL: {str(e)}")
