"""
VNPay Merchant API -- Gateway Date Helpers

The gateway wants merchant local time (GMT+7, no DST) as yyyyMMddHHmmss.
"""

import datetime

VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"
VNPAY_DATE_LENGTH = 14

# Asia/Ho_Chi_Minh has been a fixed UTC+7 offset since 1975.
VNPAY_TIMEZONE = datetime.timezone(datetime.timedelta(hours=7), "Asia/Ho_Chi_Minh")


def now_in_vnpay_timezone():
  return datetime.datetime.now(VNPAY_TIMEZONE)


def format_vnpay_date(moment):
  """Format an aware or naive datetime; aware values are converted to GMT+7 first."""
  if moment.tzinfo is not None:
    moment = moment.astimezone(VNPAY_TIMEZONE)
  return moment.strftime(VNPAY_DATE_FORMAT)


def current_vnpay_timestamp(clock=None):
  """Current time as a gateway timestamp. `clock` returns a datetime (for tests)."""
  moment = clock() if clock is not None else now_in_vnpay_timezone()
  return format_vnpay_date(moment)


def is_valid_vnpay_date(value):
  """
  True if value (str or int) is a real calendar moment in yyyyMMddHHmmss form.

  Rejects non-digits, wrong length and out-of-range parts (month 13, hour 24, ...).
  """
  if value is None or isinstance(value, bool):
    return False
  text = str(value)
  if len(text) != VNPAY_DATE_LENGTH or not text.isdigit():
    return False
  try:
    datetime.datetime.strptime(text, VNPAY_DATE_FORMAT)
  except ValueError:
    return False
  return True
