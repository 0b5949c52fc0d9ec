"""
VNPay Merchant API

Merchant-side integration with the VNPay payment gateway.

Endpoints:
  /api/health                          -- health check
  /api/v1/status                       -- API status and capabilities
  /api/v1/payments/vnpay/create        -- build a signed payment URL
  /api/v1/payments/vnpay/return        -- buyer return callback
  /api/v1/payments/vnpay/ipn           -- VNPay IPN callback
  /api/v1/payments/vnpay/querydr       -- transaction status lookup
  /api/v1/payments/vnpay/refund        -- refund a transaction
  /api/v1/payments/vnpay/banks         -- bank list
  /api/docs                            -- Swagger UI documentation

Run with:
    uvicorn app:app --host 127.0.0.1 --port 8280
"""

import datetime
import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
from routers import vnpay_payment

# --- Logging ---
logging.basicConfig(
  level=logging.INFO,
  format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger("vnpay.api")

# --- FastAPI app ---
app = FastAPI(
  title="VNPay Merchant API",
  description="Signed payment URLs, callback verification, status queries and refunds "
              "against the VNPay payment gateway.",
  version=config.API_VERSION,
  docs_url="/api/docs",
  redoc_url="/api/redoc",
  openapi_url="/api/openapi.json",
)

# --- Register routers ---
app.include_router(vnpay_payment.router)


# --- Health and status ---

class HealthResponse(BaseModel):
  status: str
  service: str
  version: str
  timestamp: str
  vnpay_configured: bool


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
  """Health check endpoint for monitoring and load balancers."""
  return HealthResponse(
    status="healthy",
    service="vnpay-merchant-api",
    version=config.API_VERSION,
    timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
    vnpay_configured=bool(config.VNPAY_TMN_CODE and config.VNPAY_SECURE_SECRET),
  )


@app.get("/api/v1/status")
async def api_status():
  """API status and capabilities."""
  return JSONResponse(
    content={
      "ok": True,
      "data": {
        "status": "operational",
        "version": config.API_VERSION,
        "capabilities": [
          "health-check",
          "vnpay-payment-url",
          "vnpay-return-verify",
          "vnpay-ipn-verify",
          "vnpay-querydr",
          "vnpay-refund",
          "vnpay-bank-list",
        ],
        "endpoints": {
          "health": "/api/health",
          "create_payment": "/api/v1/payments/vnpay/create",
          "return": "/api/v1/payments/vnpay/return",
          "ipn": "/api/v1/payments/vnpay/ipn",
          "querydr": "/api/v1/payments/vnpay/querydr",
          "refund": "/api/v1/payments/vnpay/refund",
          "banks": "/api/v1/payments/vnpay/banks",
          "docs": "/api/docs",
        },
      },
      "error": None,
    }
  )


if __name__ == "__main__":
  import uvicorn
  logger.info("Starting VNPay Merchant API on %s:%d", config.API_HOST, config.API_PORT)
  uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
