"""
Tests for VNPay payment URL building and return/IPN verification.

Tests cover:
  1. VNPayConfig validation and immutability
  2. Payment URL: layering, amount x100, create date, signature
  3. Return/IPN verification: valid, tampered, truncated hash
  4. Amount conversion round trip
  5. Security: hash fields never signed, input never mutated

Run with: python -m pytest tests/test_vnpay_payment_url_and_return.py -v
"""

import dataclasses
import datetime
import hashlib
import hmac
import os
import sys
import types
from urllib.parse import parse_qsl, urlsplit

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services import vnpay_canonical
from services.vnpay_dates import VNPAY_TIMEZONE
from services.vnpay_errors import ValidationError
from services.vnpay_payment_provider import (
  VNPayPaymentProvider,
  from_gateway_amount,
  to_gateway_amount,
)
from services.vnpay_signature import HashAlgorithm
from services.vnpay_types import (
  VNPAY_GATEWAY_SANDBOX_HOST,
  PaymentUrlParams,
  VNPayConfig,
  VnpLocale,
)

_SECRET = "SECRET"
_FIXED_NOW = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=VNPAY_TIMEZONE)


def _make_provider(**config_overrides):
  config_values = {
    "tmn_code": "TESTTMN",
    "secure_secret": _SECRET,
    "hash_algorithm": HashAlgorithm.SHA512,
    "return_url": "http://localhost:8888/order/vnpay_return",
  }
  config_values.update(config_overrides)
  return VNPayPaymentProvider(VNPayConfig(**config_values), clock=lambda: _FIXED_NOW)


def _hmac_sha512(payload, secret=_SECRET):
  return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha512).hexdigest()


def _query_fields(url):
  return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def _signed_callback(**overrides):
  """A return-URL query as VNPay would send it, signed with _SECRET."""
  fields = {
    "vnp_Amount": "10000000",
    "vnp_BankCode": "NCB",
    "vnp_BankTranNo": "VNP14012345",
    "vnp_CardType": "ATM",
    "vnp_OrderInfo": "Thanh toan don hang 12345678",
    "vnp_PayDate": "20240102030405",
    "vnp_ResponseCode": "00",
    "vnp_TmnCode": "TESTTMN",
    "vnp_TransactionNo": "14012345",
    "vnp_TransactionStatus": "00",
    "vnp_TxnRef": "12345678",
  }
  fields.update(overrides)
  fields["vnp_SecureHash"] = _hmac_sha512(vnpay_canonical.encode_sorted(fields))
  fields["vnp_SecureHashType"] = "HmacSHA512"
  return fields


# ===========================================================================
# 1. VNPayConfig
# ===========================================================================

class TestVNPayConfig:

  def test_defaults(self):
    vnpay_config = VNPayConfig(tmn_code="TESTTMN", secure_secret=_SECRET)
    assert vnpay_config.hash_algorithm is HashAlgorithm.SHA512
    assert vnpay_config.vnpay_host == VNPAY_GATEWAY_SANDBOX_HOST
    assert vnpay_config.version == "2.1.0"
    assert vnpay_config.locale is VnpLocale.VN
    assert vnpay_config.currency_code == "VND"
    assert vnpay_config.command == "pay"
    assert vnpay_config.order_type == "other"
    assert vnpay_config.payment_url == "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"

  def test_empty_secret_is_rejected(self):
    with pytest.raises(ValidationError):
      VNPayConfig(tmn_code="TESTTMN", secure_secret="")

  def test_empty_terminal_code_is_rejected(self):
    with pytest.raises(ValidationError):
      VNPayConfig(tmn_code="  ", secure_secret=_SECRET)

  def test_host_must_form_absolute_url(self):
    with pytest.raises(ValidationError):
      VNPayConfig(tmn_code="TESTTMN", secure_secret=_SECRET, vnpay_host="not-a-host")

  def test_unsupported_hash_algorithm_is_rejected(self):
    with pytest.raises(ValidationError):
      VNPayConfig(tmn_code="TESTTMN", secure_secret=_SECRET, hash_algorithm="SHA1")

  def test_hash_algorithm_by_name(self):
    vnpay_config = VNPayConfig(tmn_code="TESTTMN", secure_secret=_SECRET, hash_algorithm="SHA256")
    assert vnpay_config.hash_algorithm is HashAlgorithm.SHA256

  def test_test_mode_forces_sandbox_host(self):
    vnpay_config = VNPayConfig(
      tmn_code="TESTTMN", secure_secret=_SECRET,
      vnpay_host="https://pay.vnpay.vn", test_mode=True,
    )
    assert vnpay_config.vnpay_host == VNPAY_GATEWAY_SANDBOX_HOST

  def test_host_trailing_slash_is_normalized(self):
    vnpay_config = VNPayConfig(
      tmn_code="TESTTMN", secure_secret=_SECRET, vnpay_host="https://pay.vnpay.vn/",
    )
    assert vnpay_config.payment_url == "https://pay.vnpay.vn/paymentv2/vpcpay.html"

  def test_config_is_immutable(self):
    vnpay_config = VNPayConfig(tmn_code="TESTTMN", secure_secret=_SECRET)
    with pytest.raises(dataclasses.FrozenInstanceError):
      vnpay_config.hash_algorithm = HashAlgorithm.MD5

  def test_secret_not_in_repr(self):
    vnpay_config = VNPayConfig(tmn_code="TESTTMN", secure_secret="TOP-SECRET-VALUE")
    assert "TOP-SECRET-VALUE" not in repr(vnpay_config)

  def test_from_settings(self):
    settings = types.SimpleNamespace(
      VNPAY_TMN_CODE="TESTTMN",
      VNPAY_SECURE_SECRET=_SECRET,
      VNPAY_HASH_ALGORITHM="SHA256",
      VNPAY_HOST="https://pay.vnpay.vn",
      VNPAY_LOCALE="en",
      VNPAY_RETURN_URL="",
      VNPAY_TEST_MODE=False,
    )
    vnpay_config = VNPayConfig.from_settings(settings)
    assert vnpay_config.hash_algorithm is HashAlgorithm.SHA256
    assert vnpay_config.locale is VnpLocale.EN
    assert vnpay_config.return_url is None
    assert vnpay_config.vnpay_host == "https://pay.vnpay.vn"


# ===========================================================================
# 2. build_payment_url
# ===========================================================================

class TestBuildPaymentUrl:

  def test_signature_reproduces_from_query(self):
    """Strip vnp_SecureHash, re-canonicalize, re-sign: must match."""
    provider = _make_provider()
    url = provider.build_payment_url({
      "vnp_Amount": 100000,
      "vnp_IpAddr": "192.168.0.1",
      "vnp_TxnRef": "12345678",
    })
    fields = _query_fields(url)
    supplied_hash = fields.pop("vnp_SecureHash")
    assert _hmac_sha512(vnpay_canonical.encode_sorted(fields)) == supplied_hash

  def test_url_shape(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=100000, ip_addr="192.168.0.1", txn_ref="12345678",
    ))
    assert url.startswith("https://sandbox.vnpayment.vn/paymentv2/vpcpay.html?")
    query = urlsplit(url).query
    canonical_part, _, hash_part = query.rpartition("&vnp_SecureHash=")
    assert len(hash_part) == 128
    assert _hmac_sha512(canonical_part) == hash_part

  def test_secure_hash_is_last_parameter(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=100000, ip_addr="192.168.0.1", txn_ref="12345678",
    ))
    assert list(_query_fields(url))[-1] == "vnp_SecureHash"

  def test_amount_is_multiplied_by_100(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=100000, ip_addr="192.168.0.1", txn_ref="12345678",
    ))
    assert _query_fields(url)["vnp_Amount"] == "10000000"

  def test_fractional_amount_is_multiplied_exactly(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=12.34, ip_addr="192.168.0.1", txn_ref="12345678",
    ))
    assert _query_fields(url)["vnp_Amount"] == "1234"

  def test_config_defaults_are_applied(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678",
    )))
    assert fields["vnp_TmnCode"] == "TESTTMN"
    assert fields["vnp_Version"] == "2.1.0"
    assert fields["vnp_CurrCode"] == "VND"
    assert fields["vnp_Locale"] == "vn"
    assert fields["vnp_Command"] == "pay"
    assert fields["vnp_OrderType"] == "other"
    assert fields["vnp_ReturnUrl"] == "http://localhost:8888/order/vnpay_return"

  def test_caller_values_override_defaults(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000,
      ip_addr="192.168.0.1",
      txn_ref="12345678",
      locale=VnpLocale.EN,
      order_type="250000",
      return_url="https://shop.example/return",
    )))
    assert fields["vnp_Locale"] == "en"
    assert fields["vnp_OrderType"] == "250000"
    assert fields["vnp_ReturnUrl"] == "https://shop.example/return"

  def test_missing_create_date_is_generated_in_gmt7(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678",
    )))
    assert fields["vnp_CreateDate"] == "20240102030405"

  def test_valid_create_date_is_kept(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678", create_date="20231231235959",
    )))
    assert fields["vnp_CreateDate"] == "20231231235959"

  def test_invalid_create_date_is_replaced(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678", create_date="2023-12-31",
    )))
    assert fields["vnp_CreateDate"] == "20240102030405"

  def test_invalid_expire_date_is_rejected(self):
    provider = _make_provider()
    with pytest.raises(ValidationError):
      provider.build_payment_url(PaymentUrlParams(
        amount=1000, ip_addr="192.168.0.1", txn_ref="12345678", expire_date="tomorrow",
      ))

  def test_empty_optional_fields_are_omitted(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678", bank_code="",
    ))
    assert "vnp_BankCode" not in _query_fields(url)

  def test_order_info_defaults_from_txn_ref(self):
    provider = _make_provider()
    fields = _query_fields(provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678",
    )))
    assert fields["vnp_OrderInfo"] == "Thanh toan cho ma GD: 12345678"

  def test_extra_gateway_fields_are_signed(self):
    provider = _make_provider()
    url = provider.build_payment_url({
      "vnp_Amount": 1000,
      "vnp_IpAddr": "192.168.0.1",
      "vnp_TxnRef": "12345678",
      "vnp_Bill_Mobile": "0912345678",
    })
    fields = _query_fields(url)
    assert fields["vnp_Bill_Mobile"] == "0912345678"
    supplied_hash = fields.pop("vnp_SecureHash")
    assert _hmac_sha512(vnpay_canonical.encode_sorted(fields)) == supplied_hash

  def test_caller_supplied_secure_hash_is_not_signed(self):
    provider = _make_provider()
    url = provider.build_payment_url({
      "vnp_Amount": 1000,
      "vnp_IpAddr": "192.168.0.1",
      "vnp_TxnRef": "12345678",
      "vnp_SecureHash": "forged",
      "vnp_SecureHashType": "HmacSHA512",
    })
    assert "forged" not in url
    assert "vnp_SecureHashType" not in url

  def test_sha256_config_signs_with_sha256(self):
    provider = _make_provider(hash_algorithm=HashAlgorithm.SHA256)
    url = provider.build_payment_url(PaymentUrlParams(
      amount=1000, ip_addr="192.168.0.1", txn_ref="12345678",
    ))
    fields = _query_fields(url)
    supplied_hash = fields.pop("vnp_SecureHash")
    expected = hmac.new(
      _SECRET.encode(), vnpay_canonical.encode_sorted(fields).encode(), hashlib.sha256,
    ).hexdigest()
    assert supplied_hash == expected

  @pytest.mark.parametrize("bad_amount", [-1, "-100", "abc", "", None, float("nan"), True])
  def test_invalid_amount_is_rejected(self, bad_amount):
    provider = _make_provider()
    with pytest.raises(ValidationError):
      provider.build_payment_url(PaymentUrlParams(
        amount=bad_amount, ip_addr="192.168.0.1", txn_ref="12345678",
      ))

  def test_sub_unit_precision_is_rejected(self):
    provider = _make_provider()
    with pytest.raises(ValidationError):
      provider.build_payment_url(PaymentUrlParams(
        amount="10.005", ip_addr="192.168.0.1", txn_ref="12345678",
      ))

  def test_missing_ip_is_rejected(self):
    provider = _make_provider()
    with pytest.raises(ValidationError):
      provider.build_payment_url(PaymentUrlParams(amount=1000, ip_addr="", txn_ref="12345678"))

  def test_missing_txn_ref_is_rejected(self):
    provider = _make_provider()
    with pytest.raises(ValidationError):
      provider.build_payment_url({"vnp_Amount": 1000, "vnp_IpAddr": "192.168.0.1"})

  def test_missing_return_url_everywhere_is_rejected(self):
    provider = _make_provider(return_url=None)
    with pytest.raises(ValidationError):
      provider.build_payment_url(PaymentUrlParams(
        amount=1000, ip_addr="192.168.0.1", txn_ref="12345678",
      ))

  def test_params_object_is_not_mutated(self):
    provider = _make_provider()
    params = PaymentUrlParams(amount=1000, ip_addr="192.168.0.1", txn_ref="12345678")
    provider.build_payment_url(params)
    assert params.amount == 1000
    assert params.create_date is None


# ===========================================================================
# 3. verify_return_url / verify_ipn_call
# ===========================================================================

class TestVerifyReturnUrl:

  def test_valid_successful_callback(self):
    provider = _make_provider()
    result = provider.verify_return_url(_signed_callback())
    assert result.is_verified is True
    assert result.is_success is True
    assert result.message == "Giao dịch thành công"

  def test_english_locale_message(self):
    provider = _make_provider(locale="en")
    result = provider.verify_return_url(_signed_callback())
    assert result.message == "Transaction successful"

  def test_valid_failed_callback(self):
    provider = _make_provider()
    result = provider.verify_return_url(_signed_callback(vnp_ResponseCode="24"))
    assert result.is_verified is True
    assert result.is_success is False
    assert result.message == "Khách hàng hủy giao dịch"

  def test_unknown_response_code_uses_default_message(self):
    provider = _make_provider(locale="en")
    result = provider.verify_return_url(_signed_callback(vnp_ResponseCode="42"))
    assert result.is_verified is True
    assert result.message == "Transaction failed"

  def test_truncated_hash_is_not_verified(self):
    provider = _make_provider()
    callback = _signed_callback()
    callback["vnp_SecureHash"] = callback["vnp_SecureHash"][:-1]
    result = provider.verify_return_url(callback)
    assert result.is_verified is False
    assert result.message == "Wrong checksum"

  def test_missing_hash_is_not_verified(self):
    provider = _make_provider()
    callback = _signed_callback()
    del callback["vnp_SecureHash"]
    assert provider.verify_return_url(callback).is_verified is False

  def test_flipping_any_field_breaks_verification(self):
    provider = _make_provider()
    original = _signed_callback()
    for key, value in original.items():
      if key in ("vnp_SecureHash", "vnp_SecureHashType"):
        continue
      tampered = dict(original)
      last_character = value[-1]
      tampered[key] = value[:-1] + ("1" if last_character != "1" else "2")
      result = provider.verify_return_url(tampered)
      assert result.is_verified is False, key
      assert result.message == "Wrong checksum"

  def test_tampered_amount_still_exposes_fields(self):
    provider = _make_provider()
    callback = _signed_callback()
    callback["vnp_Amount"] = "1000"
    result = provider.verify_return_url(callback)
    assert result.is_verified is False
    assert result["vnp_TxnRef"] == "12345678"
    assert result["vnp_Amount"] == 10

  def test_secure_hash_type_does_not_affect_verification(self):
    provider = _make_provider()
    callback = _signed_callback()
    callback["vnp_SecureHashType"] = "SHA256"
    assert provider.verify_return_url(callback).is_verified is True

  def test_wrong_secret_is_not_verified(self):
    provider = _make_provider(secure_secret="ANOTHER-SECRET")
    assert provider.verify_return_url(_signed_callback()).is_verified is False

  def test_amount_is_divided_by_100(self):
    provider = _make_provider()
    result = provider.verify_return_url(_signed_callback())
    assert result["vnp_Amount"] == 100000

  def test_hash_fields_are_not_echoed(self):
    provider = _make_provider()
    result = provider.verify_return_url(_signed_callback())
    assert "vnp_SecureHash" not in result.fields
    assert "vnp_SecureHashType" not in result.fields
    assert "vnp_SecureHash" not in result.to_dict()

  def test_input_is_not_mutated(self):
    provider = _make_provider()
    callback = _signed_callback()
    snapshot = dict(callback)
    provider.verify_return_url(callback)
    assert callback == snapshot

  def test_result_is_immutable(self):
    provider = _make_provider()
    result = provider.verify_return_url(_signed_callback())
    with pytest.raises(dataclasses.FrozenInstanceError):
      result.is_verified = False
    with pytest.raises(TypeError):
      result.fields["vnp_Amount"] = 1

  def test_to_dict_shape(self):
    provider = _make_provider()
    result_dict = provider.verify_return_url(_signed_callback()).to_dict()
    assert result_dict["isVerified"] is True
    assert result_dict["isSuccess"] is True
    assert result_dict["message"] == "Giao dịch thành công"
    assert result_dict["vnp_TxnRef"] == "12345678"

  def test_ipn_uses_identical_logic(self):
    provider = _make_provider()
    callback = _signed_callback()
    assert provider.verify_ipn_call(callback).to_dict() == provider.verify_return_url(callback).to_dict()

  def test_round_trip_through_built_url(self):
    provider = _make_provider()
    url = provider.build_payment_url(PaymentUrlParams(
      amount=100000,
      ip_addr="192.168.0.1",
      txn_ref="12345678",
      order_info="Thanh toan cho ma GD: 12345678",
    ))
    result = provider.verify_return_url(_query_fields(url))
    assert result.is_verified is True
    assert result["vnp_Amount"] == 100000

  def test_empty_values_in_callback_are_ignored_for_signing(self):
    provider = _make_provider()
    callback = _signed_callback()
    callback["vnp_Extra"] = ""
    assert provider.verify_return_url(callback).is_verified is True


# ===========================================================================
# 4. Amount conversion
# ===========================================================================

class TestAmountConversion:

  @pytest.mark.parametrize("amount", [0, 1, 10000, 100000, 99999999, 12.5, 0.01, 19.99])
  def test_round_trip(self, amount):
    assert from_gateway_amount(to_gateway_amount(amount)) == amount

  def test_to_gateway_returns_int(self):
    assert to_gateway_amount("100000") == 10000000
    assert isinstance(to_gateway_amount(1.5), int)

  def test_from_gateway_integral_returns_int(self):
    assert from_gateway_amount("10000000") == 100000
    assert isinstance(from_gateway_amount("10000000"), int)

  def test_from_gateway_non_numeric_is_unchanged(self):
    assert from_gateway_amount("abc") == "abc"

  def test_large_exact_amount_converts_without_rounding(self):
    amount = "1234567890123456789012345678"
    assert to_gateway_amount(amount) == int("123456789012345678901234567800")

  def test_large_fractional_amount_is_not_rounded(self):
    assert to_gateway_amount("1234567890123456789012345678.9") == int("123456789012345678901234567890")

  def test_large_amount_beyond_whole_sub_units_is_rejected(self):
    with pytest.raises(ValidationError):
      to_gateway_amount("1234567890123456789012345678.901")

  def test_large_gateway_amount_restores_exactly(self):
    assert from_gateway_amount("123456789012345678901234567800") == int("1234567890123456789012345678")
