"""
VNPay Merchant API -- VNPay Payment Router

  POST /api/v1/payments/vnpay/create   -- build a signed payment URL
  GET  /api/v1/payments/vnpay/return   -- buyer lands here after paying
  GET  /api/v1/payments/vnpay/ipn      -- VNPay server-to-server notification
  POST /api/v1/payments/vnpay/querydr  -- ask VNPay for a transaction's status
  POST /api/v1/payments/vnpay/refund   -- ask VNPay to refund a transaction
  GET  /api/v1/payments/vnpay/banks    -- banks enabled for our terminal

Security:
  - Return and IPN fields are checksum-verified before anything trusts them.
    A mismatch is still returned to the caller (marked isVerified=false) so
    it can be logged; it never confirms a payment.
  - querydr/refund responses with a bad checksum are refused (502).
  - The IPN endpoint always answers HTTP 200 with a VNPay RspCode body;
    VNPay retries on anything else.
  - Unusable VNPay settings answer 503 VNPAY_NOT_CONFIGURED, never 400.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from services.vnpay_errors import IntegrityError, TransportError, ValidationError, VNPayError
from services.vnpay_payment_provider import get_vnpay_payment_provider
from services.vnpay_types import (
  IPN_FAIL_CHECKSUM,
  IPN_SUCCESS,
  IPN_UNKNOWN_ERROR,
  PaymentUrlParams,
  QueryDrRequest,
  RefundRequest,
  RefundTransactionType,
)

logger = logging.getLogger("vnpay.routes")

router = APIRouter(prefix="/api/v1/payments/vnpay", tags=["vnpay"])


def _error_response(http_status_code, error_code, error_message):
  """Build a standard error envelope."""
  return JSONResponse(
    status_code=http_status_code,
    content={
      "ok": False,
      "data": None,
      "error": {"code": error_code, "message": error_message},
    },
  )


def _success_response(data, http_status_code=200):
  """Build a standard success envelope."""
  return JSONResponse(
    status_code=http_status_code,
    content={"ok": True, "data": data, "error": None},
  )


def _vnpay_error_response(vnpay_error):
  """Map a VNPayError onto an error envelope."""
  if isinstance(vnpay_error, ValidationError):
    return _error_response(400, "VALIDATION_ERROR", str(vnpay_error))
  if isinstance(vnpay_error, IntegrityError):
    return _error_response(502, "INTEGRITY_ERROR", str(vnpay_error))
  if isinstance(vnpay_error, TransportError):
    return _error_response(502, "GATEWAY_UNAVAILABLE", str(vnpay_error))
  return _error_response(500, "VNPAY_ERROR", str(vnpay_error))


def _vnpay_provider_or_error():
  """The configured provider, or a 503 envelope when the VNPay settings are unusable."""
  try:
    return get_vnpay_payment_provider()
  except VNPayError as config_error:
    logger.error("VNPay provider is not configured: %s", config_error)
    return _error_response(503, "VNPAY_NOT_CONFIGURED", "VNPay is not configured on this server")


def _client_ip_address(request):
  """Buyer IP: first X-Forwarded-For hop when behind a proxy, else the peer."""
  forwarded_for = request.headers.get("x-forwarded-for", "")
  if forwarded_for:
    return forwarded_for.split(",")[0].strip()
  if request.client:
    return request.client.host
  return "127.0.0.1"


async def _read_json_object(request):
  try:
    body = await request.json()
  except Exception:
    return None
  return body if isinstance(body, dict) else None


# =========================================================================
# POST /create
# =========================================================================

@router.post("/create")
async def create_vnpay_payment_url(request: Request):
  """
  Build the VNPay redirect URL for an order.

  Request body (JSON):
    {
      "amount": 100000,              # VND, major units
      "txn_ref": "ORDER-123",
      "order_info": "...",           # optional
      "bank_code": "NCB",            # optional, skips VNPay's bank picker
      "locale": "en",                # optional
      "return_url": "https://..."    # optional, defaults to VNPAY_RETURN_URL
    }
  """
  body = await _read_json_object(request)
  if body is None:
    return _error_response(400, "INVALID_JSON", "Request body must be a JSON object")

  txn_ref = str(body.get("txn_ref") or "").strip()
  if not txn_ref:
    return _error_response(400, "MISSING_FIELD", "'txn_ref' is required")
  if body.get("amount") is None:
    return _error_response(400, "MISSING_FIELD", "'amount' is required")

  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return vnpay

  try:
    payment_url = vnpay.build_payment_url(PaymentUrlParams(
      amount=body["amount"],
      ip_addr=_client_ip_address(request),
      txn_ref=txn_ref,
      order_info=body.get("order_info"),
      return_url=body.get("return_url"),
      locale=body.get("locale"),
      bank_code=body.get("bank_code"),
    ))
  except VNPayError as vnpay_error:
    logger.warning("VNPay payment URL rejected: txn_ref=%s, error=%s", txn_ref, vnpay_error)
    return _vnpay_error_response(vnpay_error)

  return _success_response({"txn_ref": txn_ref, "payment_url": payment_url})


# =========================================================================
# GET /return and GET /ipn
# =========================================================================

@router.get("/return")
async def receive_vnpay_return(request: Request):
  """
  The buyer's browser is redirected here with the payment result in the
  query string. Returns the verification result; isVerified=false means
  the fields were tampered with and must not be trusted.
  """
  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return vnpay

  verification = vnpay.verify_return_url(dict(request.query_params))
  logger.info(
    "VNPay return: txn_ref=%s, verified=%s, success=%s",
    verification.get("vnp_TxnRef"), verification.is_verified, verification.is_success,
  )
  return _success_response(verification.to_dict())


@router.get("/ipn")
async def receive_vnpay_ipn(request: Request):
  """
  VNPay calls this server-to-server once the payment settles.

  Always returns 200 with {"RspCode", "Message"}; VNPay keeps retrying
  until it gets a body it understands.
  """
  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return JSONResponse(status_code=200, content=IPN_UNKNOWN_ERROR)

  try:
    verification = vnpay.verify_ipn_call(dict(request.query_params))
  except VNPayError as vnpay_error:
    logger.error("VNPay IPN could not be processed: %s", vnpay_error)
    return JSONResponse(status_code=200, content=IPN_UNKNOWN_ERROR)

  if not verification.is_verified:
    logger.warning(
      "VNPay IPN checksum verification FAILED: txn_ref=%s", verification.get("vnp_TxnRef"),
    )
    return JSONResponse(status_code=200, content=IPN_FAIL_CHECKSUM)

  logger.info(
    "VNPay IPN confirmed: txn_ref=%s, response_code=%s, amount=%s",
    verification.get("vnp_TxnRef"),
    verification.get("vnp_ResponseCode"),
    verification.get("vnp_Amount"),
  )
  return JSONResponse(status_code=200, content=IPN_SUCCESS)


# =========================================================================
# POST /querydr and POST /refund
# =========================================================================

@router.post("/querydr")
async def query_vnpay_transaction(request: Request):
  """
  Request body (JSON):
    {
      "txn_ref": "ORDER-123",
      "transaction_date": "20240101103000",   # vnp_CreateDate of the payment
      "order_info": "...",
      "request_id": "..."                     # optional
    }
  """
  body = await _read_json_object(request)
  if body is None:
    return _error_response(400, "INVALID_JSON", "Request body must be a JSON object")

  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return vnpay

  try:
    query_result = await vnpay.query_dr(QueryDrRequest(
      txn_ref=body.get("txn_ref"),
      transaction_date=body.get("transaction_date"),
      ip_addr=_client_ip_address(request),
      order_info=body.get("order_info"),
      request_id=body.get("request_id"),
    ))
  except VNPayError as vnpay_error:
    return _vnpay_error_response(vnpay_error)

  return _success_response(query_result)


@router.post("/refund")
async def refund_vnpay_transaction(request: Request):
  """
  Request body (JSON):
    {
      "txn_ref": "ORDER-123",
      "amount": 10000000,                  # gateway sub-units
      "transaction_date": "20240101103000",
      "create_by": "ops@example.com",
      "order_info": "...",
      "transaction_type": "02",            # 02 full, 03 partial; default 02
      "transaction_no": "14012345"         # optional
    }
  """
  body = await _read_json_object(request)
  if body is None:
    return _error_response(400, "INVALID_JSON", "Request body must be a JSON object")

  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return vnpay

  try:
    refund_result = await vnpay.refund(RefundRequest(
      txn_ref=body.get("txn_ref"),
      amount=body.get("amount"),
      transaction_type=body.get("transaction_type") or RefundTransactionType.FULL_REFUND.value,
      transaction_date=body.get("transaction_date"),
      create_by=body.get("create_by"),
      ip_addr=_client_ip_address(request),
      order_info=body.get("order_info"),
      transaction_no=body.get("transaction_no"),
      request_id=body.get("request_id"),
    ))
  except VNPayError as vnpay_error:
    return _vnpay_error_response(vnpay_error)

  return _success_response(refund_result)


# =========================================================================
# GET /banks
# =========================================================================

@router.get("/banks")
async def list_vnpay_banks():
  """Banks enabled for our terminal, with absolute logo URLs."""
  vnpay = _vnpay_provider_or_error()
  if isinstance(vnpay, JSONResponse):
    return vnpay

  try:
    bank_list = await vnpay.get_bank_list()
  except VNPayError as vnpay_error:
    return _vnpay_error_response(vnpay_error)

  return _success_response(bank_list)
