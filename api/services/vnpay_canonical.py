"""
VNPay Merchant API -- Canonical String Encoder

Two rules build the exact string that gets signed:

  (A) sorted-map  -- used by the payment URL and the return/IPN callbacks.
      Present fields only, sorted by key (code-point order, not locale),
      form-encoded, joined as key=value with '&'.

  (B) fixed-order pipe -- used by querydr/refund requests and responses.
      A hard-coded list of values joined with '|', no escaping.

Each operation declares its rule and field list in vnpay_payment_provider;
nothing here decides which fields belong in a signature.
"""

import decimal
import enum
from urllib.parse import quote_plus

# Characters left literal by the application/x-www-form-urlencoded serializer.
# quote_plus already keeps alphanumerics and "_.-"; '*' is added, '~' is removed below.
_FORM_ENCODE_EXTRA_SAFE_CHARACTERS = "*"


def render_value(value):
  """Render a primitive field value the way it appears on the wire."""
  if value is None:
    return ""
  if isinstance(value, enum.Enum):
    value = value.value
  if isinstance(value, bool):
    return "true" if value else "false"
  if isinstance(value, float) and value.is_integer():
    return str(int(value))
  if isinstance(value, decimal.Decimal) and value == value.to_integral_value():
    return str(int(value))
  return str(value)


def is_present(value):
  """A field counts as present unless it is None or the empty string."""
  return value is not None and value != ""


def form_encode(text):
  """Percent-encode one key or value (spaces become '+')."""
  return quote_plus(text, safe=_FORM_ENCODE_EXTRA_SAFE_CHARACTERS).replace("~", "%7E")


def encode_sorted(fields):
  """
  Rule (A): deterministic query string over the present fields.

  The caller must already have removed vnp_SecureHash / vnp_SecureHashType.
  """
  present_items = [
    (str(key), render_value(value))
    for key, value in fields.items()
    if is_present(value)
  ]
  present_items.sort(key=lambda item: item[0])
  return "&".join(
    f"{form_encode(key)}={form_encode(value)}" for key, value in present_items
  )


def encode_fixed_order(values, missing=""):
  """
  Rule (B): join values with '|' in the order given.

  None renders as `missing` (empty by default) so positions never shift.
  """
  return "|".join(
    missing if value is None else render_value(value) for value in values
  )
