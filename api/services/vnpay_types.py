"""
VNPay Merchant API -- Config, Enumerations and Operation Records

VNPayConfig is frozen: it is built once per provider and never mutated.
Each gateway operation gets its own record type so the fields that feed a
signature are declared here, not discovered from whatever dict a caller
happens to pass in.
"""

import dataclasses
import enum
import types
from urllib.parse import urlparse

from services.vnpay_errors import ValidationError
from services.vnpay_signature import HashAlgorithm

# ---------------------------------------------------------------------------
# Gateway constants
# ---------------------------------------------------------------------------

VNPAY_GATEWAY_SANDBOX_HOST = "https://sandbox.vnpayment.vn"
PAYMENT_ENDPOINT = "paymentv2/vpcpay.html"
QUERY_DR_REFUND_ENDPOINT = "merchant_webapi/api/transaction"
GET_BANK_LIST_ENDPOINT = "qrpayauth/api/merchant/get_bank_list"
VNP_VERSION = "2.1.0"
VNP_DEFAULT_COMMAND = "pay"

SUCCESS_RESPONSE_CODE = "00"

# IPN acknowledgement bodies the gateway expects back from the merchant.
IPN_SUCCESS = {"RspCode": "00", "Message": "Confirm Success"}
IPN_FAIL_CHECKSUM = {"RspCode": "97", "Message": "Fail checksum"}
IPN_UNKNOWN_ERROR = {"RspCode": "99", "Message": "Unknown error"}


class VnpLocale(str, enum.Enum):
  VN = "vn"
  EN = "en"


class VnpCurrCode(str, enum.Enum):
  VND = "VND"


class ProductCode(str, enum.Enum):
  """A subset of the gateway's vnp_OrderType catalogue."""

  FOOD_CONSUMPTION = "100000"
  PHONE_TABLET = "110000"
  ELECTRIC_APPLIANCE = "120000"
  TRAVEL = "170000"
  BILL_PAYMENT = "250000"
  OTHER = "other"


class RefundTransactionType(str, enum.Enum):
  FULL_REFUND = "02"
  PARTIAL_REFUND = "03"


def resolve_url(host, path):
  """Join host and path with exactly one '/' between them."""
  return f"{host.rstrip('/')}/{path.lstrip('/')}"


def _is_absolute_http_url(url):
  parsed = urlparse(url)
  return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class VNPayConfig:
  """
  Merchant credentials and gateway defaults.

  test_mode=True pins vnpay_host to the sandbox regardless of what was
  passed. Built-in defaults sit below these values, caller-supplied
  operation fields sit above them.
  """

  tmn_code: str
  secure_secret: str = dataclasses.field(repr=False)
  hash_algorithm: HashAlgorithm = HashAlgorithm.SHA512
  vnpay_host: str = VNPAY_GATEWAY_SANDBOX_HOST
  payment_endpoint: str = PAYMENT_ENDPOINT
  query_dr_refund_endpoint: str = QUERY_DR_REFUND_ENDPOINT
  bank_list_endpoint: str = GET_BANK_LIST_ENDPOINT
  version: str = VNP_VERSION
  locale: VnpLocale = VnpLocale.VN
  currency_code: str = VnpCurrCode.VND.value
  order_type: str = ProductCode.OTHER.value
  command: str = VNP_DEFAULT_COMMAND
  return_url: str = None
  test_mode: bool = False

  def __post_init__(self):
    if not self.tmn_code or not str(self.tmn_code).strip():
      raise ValidationError("VNPay terminal code (tmn_code) must not be empty")
    if not self.secure_secret or not str(self.secure_secret).strip():
      raise ValidationError("VNPay secure secret must not be empty")

    try:
      object.__setattr__(self, "hash_algorithm", HashAlgorithm(self.hash_algorithm))
    except ValueError:
      raise ValidationError(f"Unsupported hash algorithm: {self.hash_algorithm!r}") from None
    try:
      object.__setattr__(self, "locale", VnpLocale(self.locale))
    except ValueError:
      raise ValidationError(f"Unsupported locale: {self.locale!r}") from None

    if self.test_mode:
      object.__setattr__(self, "vnpay_host", VNPAY_GATEWAY_SANDBOX_HOST)

    for endpoint in (self.payment_endpoint, self.query_dr_refund_endpoint, self.bank_list_endpoint):
      if not _is_absolute_http_url(resolve_url(self.vnpay_host or "", endpoint or "")):
        raise ValidationError(
          f"VNPay host {self.vnpay_host!r} and endpoint {endpoint!r} do not form an absolute URL"
        )

  @property
  def payment_url(self):
    return resolve_url(self.vnpay_host, self.payment_endpoint)

  @property
  def query_dr_refund_url(self):
    return resolve_url(self.vnpay_host, self.query_dr_refund_endpoint)

  @property
  def bank_list_url(self):
    return resolve_url(self.vnpay_host, self.bank_list_endpoint)

  def default_fields(self):
    """Instance-level defaults merged under every payment URL."""
    return {
      "vnp_TmnCode": self.tmn_code,
      "vnp_Version": self.version,
      "vnp_CurrCode": self.currency_code,
      "vnp_Locale": self.locale.value,
      "vnp_Command": self.command,
      "vnp_OrderType": self.order_type,
      "vnp_ReturnUrl": self.return_url,
    }

  @classmethod
  def from_settings(cls, settings=None):
    """Build a config from the environment-driven settings module."""
    if settings is None:
      import config as settings
    return cls(
      tmn_code=settings.VNPAY_TMN_CODE,
      secure_secret=settings.VNPAY_SECURE_SECRET,
      hash_algorithm=settings.VNPAY_HASH_ALGORITHM,
      vnpay_host=settings.VNPAY_HOST,
      locale=settings.VNPAY_LOCALE,
      return_url=settings.VNPAY_RETURN_URL or None,
      test_mode=settings.VNPAY_TEST_MODE,
    )


# ---------------------------------------------------------------------------
# Operation records
# ---------------------------------------------------------------------------

_PAYMENT_URL_GATEWAY_NAMES = {
  "amount": "vnp_Amount",
  "ip_addr": "vnp_IpAddr",
  "txn_ref": "vnp_TxnRef",
  "order_info": "vnp_OrderInfo",
  "return_url": "vnp_ReturnUrl",
  "locale": "vnp_Locale",
  "currency_code": "vnp_CurrCode",
  "order_type": "vnp_OrderType",
  "command": "vnp_Command",
  "bank_code": "vnp_BankCode",
  "create_date": "vnp_CreateDate",
  "expire_date": "vnp_ExpireDate",
}


@dataclasses.dataclass(frozen=True)
class PaymentUrlParams:
  """
  Caller side of a payment URL. amount is in major currency units.

  extra_fields carries additional gateway fields (billing/invoice data,
  already named vnp_*) that are signed along with the rest.
  """

  amount: object
  ip_addr: str
  txn_ref: str
  order_info: str = None
  return_url: str = None
  locale: str = None
  currency_code: str = None
  order_type: str = None
  command: str = None
  bank_code: str = None
  create_date: str = None
  expire_date: str = None
  extra_fields: dict = dataclasses.field(default_factory=dict)

  @classmethod
  def from_fields(cls, fields):
    """Build from a mapping keyed by gateway field names (vnp_Amount, ...)."""
    attribute_by_gateway_name = {gateway: attr for attr, gateway in _PAYMENT_URL_GATEWAY_NAMES.items()}
    known = {}
    extra = {}
    for key, value in fields.items():
      if key in attribute_by_gateway_name:
        known[attribute_by_gateway_name[key]] = value
      else:
        extra[key] = value
    for required in ("amount", "ip_addr", "txn_ref"):
      known.setdefault(required, None)
    return cls(extra_fields=extra, **known)

  def to_fields(self):
    """Gateway-named fields the caller set explicitly (None means 'not set')."""
    fields = dict(self.extra_fields)
    for attribute, gateway_name in _PAYMENT_URL_GATEWAY_NAMES.items():
      value = getattr(self, attribute)
      if value is not None:
        fields[gateway_name] = value.value if isinstance(value, enum.Enum) else value
    return fields


@dataclasses.dataclass(frozen=True)
class QueryDrRequest:
  """Status lookup for a previously initiated payment."""

  txn_ref: str
  transaction_date: str
  ip_addr: str
  order_info: str
  request_id: str = None
  create_date: str = None


@dataclasses.dataclass(frozen=True)
class RefundRequest:
  """
  Refund of a settled payment.

  amount is forwarded to the gateway unchanged (already in sub-units).
  transaction_no is the gateway's vnp_TransactionNo and may be omitted.
  """

  txn_ref: str
  amount: object
  transaction_type: str
  transaction_date: str
  create_by: str
  ip_addr: str
  order_info: str
  transaction_no: str = None
  request_id: str = None
  create_date: str = None


# ---------------------------------------------------------------------------
# Verification result
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class VerificationResult:
  """
  Outcome of verifying a return/IPN callback.

  fields holds every callback field except vnp_SecureHash/vnp_SecureHashType,
  with vnp_Amount restored to major units. When is_verified is False none
  of them should be trusted.
  """

  is_verified: bool
  is_success: bool
  message: str
  fields: types.MappingProxyType

  def __getitem__(self, key):
    return self.fields[key]

  def get(self, key, default=None):
    return self.fields.get(key, default)

  def to_dict(self):
    return {
      **self.fields,
      "isVerified": self.is_verified,
      "isSuccess": self.is_success,
      "message": self.message,
    }
