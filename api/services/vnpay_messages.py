"""
VNPay Merchant API -- Response Message Tables

Human-readable text for gateway response codes, keyed by code then locale.
Every table has a "default" row used for codes it does not list.

  PAYMENT_RESPONSE_MAP   -- vnp_ResponseCode on return/IPN callbacks
  QUERY_DR_RESPONSE_MAP  -- vnp_ResponseCode on querydr responses
  REFUND_RESPONSE_MAP    -- vnp_ResponseCode on refund responses
"""

from services.vnpay_types import VnpLocale

PAYMENT_RESPONSE_MAP = {
  "00": {
    "vn": "Giao dịch thành công",
    "en": "Transaction successful",
  },
  "07": {
    "vn": "Trừ tiền thành công. Giao dịch bị nghi ngờ (liên quan tới lừa đảo, giao dịch bất thường).",
    "en": "Amount deducted successfully. Transaction is suspected (fraud or unusual activity).",
  },
  "09": {
    "vn": "Thẻ/Tài khoản của khách hàng chưa đăng ký dịch vụ InternetBanking tại ngân hàng.",
    "en": "Customer card/account is not registered for InternetBanking at the bank.",
  },
  "10": {
    "vn": "Khách hàng xác thực thông tin thẻ/tài khoản không đúng quá 3 lần",
    "en": "Customer failed card/account authentication more than 3 times.",
  },
  "11": {
    "vn": "Đã hết hạn chờ thanh toán. Xin quý khách vui lòng thực hiện lại giao dịch.",
    "en": "Payment window expired. Please retry the transaction.",
  },
  "12": {
    "vn": "Thẻ/Tài khoản của khách hàng bị khóa.",
    "en": "Customer card/account is locked.",
  },
  "13": {
    "vn": "Quý khách nhập sai mật khẩu xác thực giao dịch (OTP). Xin quý khách vui lòng thực hiện lại giao dịch.",
    "en": "Wrong one-time password (OTP). Please retry the transaction.",
  },
  "24": {
    "vn": "Khách hàng hủy giao dịch",
    "en": "Customer cancelled the transaction.",
  },
  "51": {
    "vn": "Tài khoản của quý khách không đủ số dư để thực hiện giao dịch.",
    "en": "Insufficient account balance.",
  },
  "65": {
    "vn": "Tài khoản của Quý khách đã vượt quá hạn mức giao dịch trong ngày.",
    "en": "Account has exceeded its daily transaction limit.",
  },
  "75": {
    "vn": "Ngân hàng thanh toán đang bảo trì.",
    "en": "The paying bank is under maintenance.",
  },
  "79": {
    "vn": "Quý khách nhập sai mật khẩu thanh toán quá số lần quy định. Xin quý khách vui lòng thực hiện lại giao dịch",
    "en": "Payment password entered incorrectly too many times. Please retry the transaction.",
  },
  "99": {
    "vn": "Lỗi không xác định.",
    "en": "Unknown error.",
  },
  "default": {
    "vn": "Giao dịch thất bại",
    "en": "Transaction failed",
  },
}

QUERY_DR_RESPONSE_MAP = {
  "00": {
    "vn": "Yêu cầu thành công",
    "en": "Request successful",
  },
  "02": {
    "vn": "Mã định danh kết nối không hợp lệ (kiểm tra lại TmnCode)",
    "en": "Invalid merchant terminal (check TmnCode)",
  },
  "03": {
    "vn": "Dữ liệu gửi sang không đúng định dạng",
    "en": "Request data is malformed",
  },
  "91": {
    "vn": "Không tìm thấy giao dịch yêu cầu",
    "en": "Transaction not found",
  },
  "94": {
    "vn": "Yêu cầu trùng lặp, duplicate request trong thời gian giới hạn của API",
    "en": "Duplicate request within the API time limit",
  },
  "97": {
    "vn": "Checksum không hợp lệ",
    "en": "Invalid checksum",
  },
  "99": {
    "vn": "Lỗi không xác định",
    "en": "Unknown error",
  },
  "default": {
    "vn": "Giao dịch thất bại",
    "en": "Transaction failed",
  },
}

REFUND_RESPONSE_MAP = {
  "00": {
    "vn": "Yêu cầu thành công",
    "en": "Request successful",
  },
  "02": {
    "vn": "Mã định danh kết nối không hợp lệ (kiểm tra lại TmnCode)",
    "en": "Invalid merchant terminal (check TmnCode)",
  },
  "03": {
    "vn": "Dữ liệu gửi sang không đúng định dạng",
    "en": "Request data is malformed",
  },
  "91": {
    "vn": "Không tìm thấy giao dịch yêu cầu hoàn trả",
    "en": "Transaction to refund not found",
  },
  "94": {
    "vn": "Giao dịch đã được gửi yêu cầu hoàn tiền trước đó. Yêu cầu này VNPAY đang xử lý",
    "en": "A refund was already requested for this transaction and is being processed",
  },
  "95": {
    "vn": "Giao dịch này không thành công bên VNPAY. VNPAY từ chối xử lý yêu cầu",
    "en": "The transaction did not succeed at VNPAY; the refund is rejected",
  },
  "97": {
    "vn": "Checksum không hợp lệ",
    "en": "Invalid checksum",
  },
  "99": {
    "vn": "Lỗi không xác định",
    "en": "Unknown error",
  },
  "default": {
    "vn": "Giao dịch thất bại",
    "en": "Transaction failed",
  },
}


def lookup_message(response_code, locale=VnpLocale.VN, table=PAYMENT_RESPONSE_MAP):
  """
  Message for response_code in locale, falling back to the table's default row.

  Unknown locales fall back to Vietnamese, which every row carries.
  """
  try:
    locale_key = VnpLocale(locale).value
  except ValueError:
    locale_key = VnpLocale.VN.value
  row = table.get("" if response_code is None else str(response_code)) or table["default"]
  return row.get(locale_key) or row[VnpLocale.VN.value]
