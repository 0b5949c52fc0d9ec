"""
VNPay Merchant API -- VNPay Payment Provider

VNPay integration using direct HTTP calls via httpx for the two server-side
APIs; the payment itself happens on VNPay's hosted page.

  build_payment_url   -- signed redirect URL           (sorted-map rule)
  verify_return_url   -- buyer return callback          (sorted-map rule)
  verify_ipn_call     -- server-to-server notification  (sorted-map rule)
  query_dr            -- POST merchant_webapi/api/transaction, command querydr (pipe rule)
  refund              -- POST merchant_webapi/api/transaction, command refund  (pipe rule)
  get_bank_list       -- POST qrpayauth/api/merchant/get_bank_list

Trust policy:
  - Callbacks with a bad checksum come back with is_verified=False.
  - querydr/refund responses with a bad checksum raise IntegrityError.
  - querydr/refund response codes 90-99 are unsigned gateway errors and are
    returned without checking a checksum.

Every operation works on its own local data over a frozen VNPayConfig, so
one provider instance can serve concurrent requests.
"""

import decimal
import logging
import types
import uuid

import httpx

from services.payment_provider_interface import PaymentProviderInterface
from services.vnpay_canonical import encode_fixed_order, encode_sorted, is_present, render_value
from services.vnpay_dates import current_vnpay_timestamp, is_valid_vnpay_date
from services.vnpay_errors import IntegrityError, TransportError, ValidationError
from services.vnpay_messages import (
  PAYMENT_RESPONSE_MAP,
  QUERY_DR_RESPONSE_MAP,
  REFUND_RESPONSE_MAP,
  lookup_message,
)
from services.vnpay_signature import sign, signatures_match
from services.vnpay_types import (
  SUCCESS_RESPONSE_CODE,
  PaymentUrlParams,
  VNPayConfig,
  VerificationResult,
  resolve_url,
)

logger = logging.getLogger("vnpay.provider")

SECURE_HASH_FIELD = "vnp_SecureHash"
SECURE_HASH_TYPE_FIELD = "vnp_SecureHashType"

QUERY_DR_COMMAND = "querydr"
REFUND_COMMAND = "refund"

WRONG_CALLBACK_CHECKSUM_MESSAGE = "Wrong checksum"
WRONG_RESPONSE_CHECKSUM_MESSAGE = "Wrong checksum from VNPay response"

# Absent response fields render as this text inside the pipe string.
MISSING_RESPONSE_FIELD_TEXT = "undefined"
# A field sent as JSON null is signed as this text, not as an absent field.
NULL_RESPONSE_FIELD_TEXT = "null"

_SOFT_ERROR_CODE_MIN = 90
_SOFT_ERROR_CODE_MAX = 99

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Amount conversion (gateway works in sub-units: major * 100)
# ---------------------------------------------------------------------------

def to_gateway_amount(amount):
  """Major currency units -> integer sub-units. Raises ValidationError."""
  if amount is None or amount == "" or isinstance(amount, bool):
    raise ValidationError("vnp_Amount is required")
  try:
    major_units = decimal.Decimal(str(amount).strip())
  except decimal.InvalidOperation:
    raise ValidationError(f"vnp_Amount must be numeric, got {amount!r}") from None
  if not major_units.is_finite():
    raise ValidationError(f"vnp_Amount must be numeric, got {amount!r}")
  if major_units < 0:
    raise ValidationError(f"vnp_Amount must not be negative, got {amount!r}")
  # Enough digits for an exact product; the default 28-digit context rounds.
  with decimal.localcontext() as context:
    context.prec = len(major_units.as_tuple().digits) + 3
    context.traps[decimal.Inexact] = True
    try:
      sub_units = major_units * 100
    except decimal.Inexact:
      raise ValidationError(f"vnp_Amount is out of range: {amount!r}") from None
  if sub_units != sub_units.to_integral_value():
    raise ValidationError(f"vnp_Amount has more precision than the gateway accepts: {amount!r}")
  return int(sub_units)


def from_gateway_amount(value):
  """Integer sub-units -> major units. Non-numeric values are returned unchanged."""
  try:
    sub_units = decimal.Decimal(str(value).strip())
  except decimal.InvalidOperation:
    return value
  if not sub_units.is_finite():
    return value
  major_units = sub_units.scaleb(-2, decimal.Context(prec=len(sub_units.as_tuple().digits) + 3))
  if major_units == major_units.to_integral_value():
    return int(major_units)
  return float(major_units)


def is_soft_error_response_code(response_code):
  """True for the unsigned gateway-error band 90..99 (inclusive)."""
  try:
    numeric_code = int(str(response_code).strip())
  except (TypeError, ValueError):
    return False
  return _SOFT_ERROR_CODE_MIN <= numeric_code <= _SOFT_ERROR_CODE_MAX


def _require_fields(operation, named_values):
  missing = [name for name, value in named_values.items() if not is_present(value)]
  if missing:
    raise ValidationError(f"VNPay {operation} is missing required fields: {', '.join(missing)}")


def _require_gateway_date(operation, field_name, value):
  if not is_valid_vnpay_date(value):
    raise ValidationError(
      f"VNPay {operation} field {field_name} must be yyyyMMddHHmmss, got {value!r}"
    )


def _generate_request_id():
  return uuid.uuid4().hex


def _response_field(response_data, key):
  """Pipe value of a response field: None when absent, 'null' for an explicit null."""
  if key not in response_data:
    return None
  value = response_data[key]
  return NULL_RESPONSE_FIELD_TEXT if value is None else value


class VNPayPaymentProvider(PaymentProviderInterface):
  """VNPay gateway provider over one immutable VNPayConfig."""

  def __init__(
    self,
    vnpay_config,
    http_timeout_seconds=DEFAULT_HTTP_TIMEOUT_SECONDS,
    transport=None,
    clock=None,
  ):
    """
    Args:
      vnpay_config: VNPayConfig.
      http_timeout_seconds: per-call timeout for the gateway round trip.
      transport: optional httpx transport (tests use httpx.MockTransport).
      clock: optional callable returning the current datetime.
    """
    self.config = vnpay_config
    self.http_timeout_seconds = http_timeout_seconds
    self._transport = transport
    self._clock = clock

  def _sign(self, payload):
    return sign(self.config.secure_secret, payload, self.config.hash_algorithm)

  def _now_timestamp(self):
    return current_vnpay_timestamp(self._clock)

  # -----------------------------------------------------------------------
  # Gateway HTTP round trip
  # -----------------------------------------------------------------------

  async def _post_to_gateway(self, url, operation, **request_kwargs):
    """
    POST once and return the decoded JSON body.
    Any failure to get a 2xx JSON answer is a TransportError; no retries.
    """
    try:
      async with httpx.AsyncClient(
        timeout=self.http_timeout_seconds,
        transport=self._transport,
      ) as http_client:
        response = await http_client.post(url, **request_kwargs)
    except httpx.HTTPError as http_error:
      logger.error("VNPay %s request failed: url=%s, error=%s", operation, url, http_error)
      raise TransportError(f"VNPay {operation} request failed: {http_error}") from http_error

    if not response.is_success:
      logger.error(
        "VNPay %s returned HTTP %s: url=%s", operation, response.status_code, url,
      )
      raise TransportError(
        f"HTTP error! status: {response.status_code}",
        status_code=response.status_code,
      )

    try:
      return response.json()
    except ValueError:
      logger.error("VNPay %s returned a non-JSON body: url=%s", operation, url)
      raise TransportError(
        f"VNPay {operation} returned a non-JSON body",
        status_code=response.status_code,
      ) from None

  @staticmethod
  def _require_json_object(operation, response_data):
    if not isinstance(response_data, dict):
      raise TransportError(f"VNPay {operation} returned an unexpected body: {type(response_data).__name__}")
    return response_data

  # -----------------------------------------------------------------------
  # Payment URL
  # -----------------------------------------------------------------------

  def build_payment_url(self, params):
    """
    Build the signed VNPay redirect URL.

    params may be a PaymentUrlParams or a mapping keyed by gateway names.
    Caller fields override config defaults. The amount is multiplied by 100
    and vnp_CreateDate is (re)generated in GMT+7 if absent or invalid.
    """
    if not isinstance(params, PaymentUrlParams):
      params = PaymentUrlParams.from_fields(params)

    fields = {
      key: value for key, value in self.config.default_fields().items() if value is not None
    }
    fields.update(params.to_fields())
    fields.pop(SECURE_HASH_FIELD, None)
    fields.pop(SECURE_HASH_TYPE_FIELD, None)

    _require_fields("payment URL", {
      "vnp_IpAddr": fields.get("vnp_IpAddr"),
      "vnp_TxnRef": fields.get("vnp_TxnRef"),
      "vnp_ReturnUrl": fields.get("vnp_ReturnUrl"),
    })
    fields["vnp_Amount"] = to_gateway_amount(params.amount)

    if not is_present(fields.get("vnp_OrderInfo")):
      fields["vnp_OrderInfo"] = f"Thanh toan cho ma GD: {fields['vnp_TxnRef']}"

    create_date = fields.get("vnp_CreateDate")
    if not is_valid_vnpay_date(create_date):
      if is_present(create_date):
        logger.warning(
          "VNPay payment URL: replacing invalid vnp_CreateDate=%r for txn_ref=%s",
          create_date, fields["vnp_TxnRef"],
        )
      fields["vnp_CreateDate"] = self._now_timestamp()

    expire_date = fields.get("vnp_ExpireDate")
    if is_present(expire_date):
      _require_gateway_date("payment URL", "vnp_ExpireDate", expire_date)

    canonical_query = encode_sorted(fields)
    secure_hash = self._sign(canonical_query)

    logger.info(
      "VNPay payment URL built: txn_ref=%s, amount_sub_units=%s",
      fields["vnp_TxnRef"], fields["vnp_Amount"],
    )
    return f"{self.config.payment_url}?{canonical_query}&{SECURE_HASH_FIELD}={secure_hash}"

  # -----------------------------------------------------------------------
  # Return URL / IPN verification
  # -----------------------------------------------------------------------

  def verify_return_url(self, query_fields):
    """
    Verify callback fields delivered on the buyer's return URL.

    The supplied hash and hash-type hint are removed, the rest is
    re-canonicalized and re-signed with our secret, and the two digests are
    compared. A mismatch is reported, not raised.
    """
    working_fields = dict(query_fields)
    supplied_hash = working_fields.pop(SECURE_HASH_FIELD, None)
    working_fields.pop(SECURE_HASH_TYPE_FIELD, None)

    computed_hash = self._sign(encode_sorted(working_fields))
    is_verified = signatures_match(supplied_hash, computed_hash)

    response_code = working_fields.get("vnp_ResponseCode")
    response_code_text = None if response_code is None else render_value(response_code)
    is_success = response_code_text == SUCCESS_RESPONSE_CODE

    if is_verified:
      message = lookup_message(response_code_text, self.config.locale, PAYMENT_RESPONSE_MAP)
    else:
      message = WRONG_CALLBACK_CHECKSUM_MESSAGE
      logger.warning(
        "VNPay callback checksum mismatch: txn_ref=%s, response_code=%s",
        working_fields.get("vnp_TxnRef"), response_code_text,
      )

    if is_present(working_fields.get("vnp_Amount")):
      working_fields["vnp_Amount"] = from_gateway_amount(working_fields["vnp_Amount"])

    return VerificationResult(
      is_verified=is_verified,
      is_success=is_success,
      message=message,
      fields=types.MappingProxyType(working_fields),
    )

  def verify_ipn_call(self, query_fields):
    """
    Verify an IPN call. Identical to verify_return_url.

    After this the merchant still has to check the order exists, the amount
    matches and the order is not already confirmed before acknowledging.
    """
    return self.verify_return_url(query_fields)

  # -----------------------------------------------------------------------
  # querydr
  # -----------------------------------------------------------------------

  async def query_dr(self, request):
    """
    Query the gateway for the outcome of a transaction.

    Signed request string (9 fields, in this order):
      RequestId|Version|querydr|TmnCode|TxnRef|TransactionDate|CreateDate|IpAddr|OrderInfo
    """
    _require_fields("querydr", {
      "vnp_TxnRef": request.txn_ref,
      "vnp_IpAddr": request.ip_addr,
      "vnp_OrderInfo": request.order_info,
    })
    _require_gateway_date("querydr", "vnp_TransactionDate", request.transaction_date)
    create_date = request.create_date or self._now_timestamp()
    _require_gateway_date("querydr", "vnp_CreateDate", create_date)
    request_id = request.request_id or _generate_request_id()

    request_fields = {
      "vnp_RequestId": request_id,
      "vnp_Version": self.config.version,
      "vnp_TxnRef": request.txn_ref,
      "vnp_TransactionDate": render_value(request.transaction_date),
      "vnp_CreateDate": render_value(create_date),
      "vnp_IpAddr": request.ip_addr,
      "vnp_OrderInfo": request.order_info,
    }
    string_to_sign = encode_fixed_order([
      request_id,
      self.config.version,
      QUERY_DR_COMMAND,
      self.config.tmn_code,
      request.txn_ref,
      request.transaction_date,
      create_date,
      request.ip_addr,
      request.order_info,
    ])
    body = {
      **request_fields,
      "vnp_Command": QUERY_DR_COMMAND,
      "vnp_TmnCode": self.config.tmn_code,
      SECURE_HASH_FIELD: self._sign(string_to_sign),
    }

    response_data = self._require_json_object(
      QUERY_DR_COMMAND,
      await self._post_to_gateway(self.config.query_dr_refund_url, QUERY_DR_COMMAND, json=body),
    )
    response_code = response_data.get("vnp_ResponseCode")

    if is_soft_error_response_code(response_code):
      logger.info(
        "VNPay querydr gateway error: txn_ref=%s, response_code=%s",
        request.txn_ref, response_code,
      )
      return {
        **response_data,
        "vnp_Message": lookup_message(response_code, self.config.locale, QUERY_DR_RESPONSE_MAP),
      }

    response_string = encode_fixed_order([
      _response_field(response_data, "vnp_ResponseId"),
      _response_field(response_data, "vnp_Command"),
      _response_field(response_data, "vnp_ResponseCode"),
      _response_field(response_data, "vnp_Message"),
      self.config.tmn_code,
      _response_field(response_data, "vnp_TxnRef"),
      _response_field(response_data, "vnp_Amount"),
      _response_field(response_data, "vnp_BankCode"),
      _response_field(response_data, "vnp_PayDate"),
      _response_field(response_data, "vnp_TransactionNo"),
      _response_field(response_data, "vnp_TransactionType"),
      _response_field(response_data, "vnp_TransactionStatus"),
      _response_field(response_data, "vnp_OrderInfo"),
      _response_field(response_data, "vnp_PromotionCode"),
      _response_field(response_data, "vnp_PromotionAmount"),
    ], missing=MISSING_RESPONSE_FIELD_TEXT)
    response_string = response_string.replace(MISSING_RESPONSE_FIELD_TEXT, "")

    if not signatures_match(response_data.get(SECURE_HASH_FIELD), self._sign(response_string)):
      logger.warning(
        "VNPay querydr response checksum mismatch: txn_ref=%s, response_id=%s",
        request.txn_ref, response_data.get("vnp_ResponseId"),
      )
      raise IntegrityError(WRONG_RESPONSE_CHECKSUM_MESSAGE)

    logger.info(
      "VNPay querydr: txn_ref=%s, response_code=%s, transaction_status=%s",
      request.txn_ref, response_code, response_data.get("vnp_TransactionStatus"),
    )
    return {
      **response_data,
      "vnp_Message": lookup_message(response_code, self.config.locale, QUERY_DR_RESPONSE_MAP),
    }

  # -----------------------------------------------------------------------
  # refund
  # -----------------------------------------------------------------------

  async def refund(self, request):
    """
    Ask the gateway to refund a settled transaction.

    Signed request string (13 fields, in this order):
      RequestId|Version|refund|TmnCode|TransactionType|TxnRef|Amount|
      TransactionNo|TransactionDate|CreateBy|CreateDate|IpAddr|OrderInfo
    """
    _require_fields("refund", {
      "vnp_TxnRef": request.txn_ref,
      "vnp_Amount": request.amount,
      "vnp_TransactionType": request.transaction_type,
      "vnp_CreateBy": request.create_by,
      "vnp_IpAddr": request.ip_addr,
      "vnp_OrderInfo": request.order_info,
    })
    _require_gateway_date("refund", "vnp_TransactionDate", request.transaction_date)
    create_date = request.create_date or self._now_timestamp()
    _require_gateway_date("refund", "vnp_CreateDate", create_date)
    request_id = request.request_id or _generate_request_id()

    request_fields = {
      "vnp_RequestId": request_id,
      "vnp_Version": self.config.version,
      "vnp_Command": REFUND_COMMAND,
      "vnp_TmnCode": self.config.tmn_code,
      "vnp_TransactionType": render_value(request.transaction_type),
      "vnp_TxnRef": request.txn_ref,
      "vnp_Amount": request.amount,
      "vnp_TransactionDate": render_value(request.transaction_date),
      "vnp_CreateBy": request.create_by,
      "vnp_CreateDate": render_value(create_date),
      "vnp_IpAddr": request.ip_addr,
      "vnp_OrderInfo": request.order_info,
    }
    if is_present(request.transaction_no):
      request_fields["vnp_TransactionNo"] = request.transaction_no

    string_to_sign = encode_fixed_order([
      request_id,
      self.config.version,
      REFUND_COMMAND,
      self.config.tmn_code,
      request.transaction_type,
      request.txn_ref,
      request.amount,
      request.transaction_no,
      request.transaction_date,
      request.create_by,
      create_date,
      request.ip_addr,
      request.order_info,
    ])
    body = {**request_fields, SECURE_HASH_FIELD: self._sign(string_to_sign)}

    response_data = self._require_json_object(
      REFUND_COMMAND,
      await self._post_to_gateway(self.config.query_dr_refund_url, REFUND_COMMAND, json=body),
    )
    response_code = response_data.get("vnp_ResponseCode")

    if is_soft_error_response_code(response_code):
      logger.info(
        "VNPay refund gateway error: txn_ref=%s, response_code=%s",
        request.txn_ref, response_code,
      )
      return {
        **response_data,
        "vnp_Message": lookup_message(response_code, self.config.locale, QUERY_DR_RESPONSE_MAP),
      }

    # No 'undefined' scrubbing here, unlike querydr.
    response_string = encode_fixed_order([
      _response_field(response_data, "vnp_ResponseId"),
      REFUND_COMMAND,
      _response_field(response_data, "vnp_ResponseCode"),
      _response_field(response_data, "vnp_Message"),
      _response_field(response_data, "vnp_TmnCode"),
      _response_field(response_data, "vnp_TxnRef"),
      _response_field(response_data, "vnp_Amount"),
      _response_field(response_data, "vnp_BankCode"),
      _response_field(response_data, "vnp_PayDate"),
      _response_field(response_data, "vnp_TransactionNo"),
      _response_field(response_data, "vnp_TransactionType"),
      _response_field(response_data, "vnp_TransactionStatus"),
      _response_field(response_data, "vnp_OrderInfo"),
    ], missing=MISSING_RESPONSE_FIELD_TEXT)

    if not signatures_match(response_data.get(SECURE_HASH_FIELD), self._sign(response_string)):
      logger.warning(
        "VNPay refund response checksum mismatch: txn_ref=%s, response_id=%s",
        request.txn_ref, response_data.get("vnp_ResponseId"),
      )
      raise IntegrityError(WRONG_RESPONSE_CHECKSUM_MESSAGE)

    logger.info(
      "VNPay refund: txn_ref=%s, amount=%s, response_code=%s",
      request.txn_ref, request.amount, response_code,
    )
    return {
      **response_data,
      "vnp_Message": lookup_message(response_code, self.config.locale, REFUND_RESPONSE_MAP),
    }

  # -----------------------------------------------------------------------
  # Bank list
  # -----------------------------------------------------------------------

  async def get_bank_list(self):
    """Banks enabled for this terminal, logo_link made absolute against the host."""
    bank_list = await self._post_to_gateway(
      self.config.bank_list_url,
      "bank list",
      data={"tmn_code": self.config.tmn_code},
    )
    if not isinstance(bank_list, list):
      raise TransportError(f"VNPay bank list returned an unexpected body: {type(bank_list).__name__}")

    resolved_banks = []
    for bank in bank_list:
      if not isinstance(bank, dict):
        raise TransportError(f"VNPay bank list returned an unexpected entry: {type(bank).__name__}")
      bank = dict(bank)
      logo_link = bank.get("logo_link")
      if logo_link and not logo_link.startswith(("http://", "https://")):
        bank["logo_link"] = resolve_url(self.config.vnpay_host, logo_link)
      resolved_banks.append(bank)
    return resolved_banks


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_vnpay_provider_singleton = None


def get_vnpay_payment_provider():
  """Get the VNPay payment provider singleton (built from config on first use)."""
  global _vnpay_provider_singleton
  if _vnpay_provider_singleton is None:
    import config
    _vnpay_provider_singleton = VNPayPaymentProvider(
      VNPayConfig.from_settings(config),
      http_timeout_seconds=config.VNPAY_HTTP_TIMEOUT_SECONDS,
    )
  return _vnpay_provider_singleton
