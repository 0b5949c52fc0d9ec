"""
VNPay Merchant API -- Error Types

  ValidationError  -- malformed or missing input (caller must fix it)
  TransportError   -- the gateway call itself failed (status, timeout, network)
  IntegrityError   -- a query/refund response failed its checksum

A checksum mismatch on a return/IPN callback is NOT an exception: it comes
back as VerificationResult(is_verified=False) so the fields can still be
logged or displayed.
"""


class VNPayError(Exception):
  """Base class for all VNPay integration errors."""


class ValidationError(VNPayError):
  """Raised when caller input or configuration is malformed."""


class TransportError(VNPayError):
  """Raised when a gateway HTTP call does not complete successfully."""

  def __init__(self, message, status_code=None):
    super().__init__(message)
    self.status_code = status_code


class IntegrityError(VNPayError):
  """Raised when a signed gateway response does not match its checksum."""
