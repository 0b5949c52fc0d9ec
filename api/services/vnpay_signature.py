"""
VNPay Merchant API -- Signature Primitive

HMAC over the UTF-8 bytes of a canonical string, lowercase hex output.
The secret never leaves this module in any form other than the digest.
"""

import enum
import hashlib
import hmac


class HashAlgorithm(str, enum.Enum):
  """Hash algorithms the gateway accepts for vnp_SecureHash."""

  SHA256 = "SHA256"
  SHA512 = "SHA512"
  MD5 = "MD5"


_HASHLIB_CONSTRUCTORS = {
  HashAlgorithm.SHA256: hashlib.sha256,
  HashAlgorithm.SHA512: hashlib.sha512,
  HashAlgorithm.MD5: hashlib.md5,
}


def sign(secret, payload, algorithm=HashAlgorithm.SHA512):
  """
  Compute the keyed hash of payload.

  Args:
    secret: Merchant secure secret (str).
    payload: Canonical string (str) or its UTF-8 bytes.
    algorithm: HashAlgorithm member or its name.

  Returns: lowercase hex digest.
  """
  if isinstance(payload, str):
    payload = payload.encode("utf-8")
  digest_constructor = _HASHLIB_CONSTRUCTORS[HashAlgorithm(algorithm)]
  return hmac.new(secret.encode("utf-8"), payload, digest_constructor).hexdigest()


def signatures_match(supplied_signature, computed_signature):
  """
  Compare a supplied signature against one we recomputed ourselves.

  Exact match only (case-sensitive), constant time. A missing or
  non-string supplied signature never matches.
  """
  if not isinstance(supplied_signature, str) or not supplied_signature:
    return False
  return hmac.compare_digest(
    supplied_signature.encode("utf-8"),
    computed_signature.encode("utf-8"),
  )
