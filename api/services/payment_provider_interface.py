"""
VNPay Merchant API -- Payment Provider Interface

Abstract base for redirect-style payment gateways. Routers only talk to
this interface; VNPayPaymentProvider is the implementation we ship.
"""

from abc import ABC, abstractmethod


class PaymentProviderInterface(ABC):
  """Abstract base for payment providers."""

  @abstractmethod
  def build_payment_url(self, params):
    """
    Build the signed URL the buyer is redirected to.

    Args:
      params: PaymentUrlParams (amount in major currency units).

    Returns: absolute URL string carrying the signature as a query parameter.
    """
    ...

  @abstractmethod
  def verify_return_url(self, query_fields):
    """
    Verify the fields the gateway appended to the buyer's return URL.

    Args:
      query_fields: flat mapping of query-string parameters.

    Returns: VerificationResult. Tampering yields is_verified=False; it
    never raises.
    """
    ...

  @abstractmethod
  def verify_ipn_call(self, query_fields):
    """
    Verify a server-to-server payment notification.
    Same contract as verify_return_url.
    """
    ...

  @abstractmethod
  async def query_dr(self, request):
    """
    Look up the status of a previously initiated transaction.

    Args:
      request: QueryDrRequest.

    Returns: dict of the gateway response with a human-readable message.
    Raises TransportError / IntegrityError.
    """
    ...

  @abstractmethod
  async def refund(self, request):
    """
    Refund a settled transaction (full or partial).

    Args:
      request: RefundRequest.

    Returns: dict of the gateway response with a human-readable message.
    Raises TransportError / IntegrityError.
    """
    ...

  @abstractmethod
  async def get_bank_list(self):
    """
    Banks the merchant terminal may route payments to.

    Returns: list of dicts with absolute logo_link URLs.
    """
    ...
