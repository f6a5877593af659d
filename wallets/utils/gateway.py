import hashlib
import hmac
import logging
import secrets
import time
from decimal import Decimal

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

# Configurable via Django settings with sensible defaults
GATEWAY_BASE_URL = getattr(
    settings, "RAZORPAY_BASE_URL", "https://api.razorpay.com/v1"
)
GATEWAY_TIMEOUT = getattr(settings, "RAZORPAY_TIMEOUT", 10)
GATEWAY_CURRENCY = "INR"

MOCK_ORDER_PREFIX = "mock_order_"
MOCK_RECHARGE_PREFIX = "mock_recharge_"


def gateway_key_id() -> str:
    return getattr(settings, "RAZORPAY_KEY_ID", "")


def gateway_secret() -> str:
    return getattr(settings, "RAZORPAY_KEY_SECRET", "")


def is_mock_mode() -> bool:
    """No real gateway credentials configured."""
    key_id = gateway_key_id()
    return not key_id or key_id == "YOUR_KEY_ID"


def is_mock_order(gateway_order_id: str, mock_prefix: str) -> bool:
    return bool(gateway_order_id and mock_prefix) and gateway_order_id.startswith(
        mock_prefix
    )


def signature_for(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    """Hex HMAC-SHA256 of "<order id>|<payment id>" keyed by the gateway secret."""
    body = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(
        secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    mock_prefix: str = "",
) -> bool:
    """
    Check a payment confirmation signed by the gateway.

    Orders carrying the flow's own `mock_prefix` are accepted without a
    signature check so the flow works in environments without gateway
    credentials. Any other id, including the other flow's mock ids, must
    carry a valid signature.
    """
    if is_mock_order(gateway_order_id, mock_prefix):
        logger.info("Mock payment auto-verified: gateway_order=%s", gateway_order_id)
        return True

    expected = signature_for(gateway_order_id, gateway_payment_id, gateway_secret())
    if not hmac.compare_digest(expected, signature or ""):
        logger.warning(
            "Signature mismatch: gateway_order=%s gateway_payment=%s",
            gateway_order_id,
            gateway_payment_id,
        )
        return False
    return True


def to_subunits(amount: Decimal) -> int:
    """Rupees to paise."""
    return int(Decimal(str(amount)) * 100)


def request_gateway_order(amount: Decimal, receipt: str, mock_prefix: str) -> dict:
    """
    Create an order with the payment gateway.

    Falls back to a locally generated mock order when no key id is
    configured. Handles HTTP errors and network failures and returns a
    structured result dict for consistent downstream handling.

    Returns:
        dict with keys:
            - success (bool): Whether an order id was obtained.
            - response (dict): Order data (id, amount, currency, keyId,
              isMock) or error details.
    """
    subunits = to_subunits(amount)

    if is_mock_mode():
        order_id = f"{mock_prefix}{int(time.time() * 1000)}{secrets.token_hex(3)}"
        logger.info("Mock gateway order created: id=%s amount=%d", order_id, subunits)
        return {
            "success": True,
            "response": {
                "id": order_id,
                "currency": GATEWAY_CURRENCY,
                "amount": subunits,
                "keyId": "YOUR_KEY_ID",
                "isMock": True,
            },
        }

    try:
        response = requests.post(
            f"{GATEWAY_BASE_URL}/orders",
            auth=(gateway_key_id(), gateway_secret()),
            json={"amount": subunits, "currency": GATEWAY_CURRENCY, "receipt": receipt},
            timeout=GATEWAY_TIMEOUT,
        )
        response_data = response.json()

        if response.status_code == 200 and response_data.get("id"):
            logger.info(
                "Gateway order created: id=%s amount=%d receipt=%s",
                response_data["id"],
                subunits,
                receipt,
            )
            return {
                "success": True,
                "response": {
                    "id": response_data["id"],
                    "currency": response_data.get("currency", GATEWAY_CURRENCY),
                    "amount": response_data.get("amount", subunits),
                    "keyId": gateway_key_id(),
                    "isMock": False,
                },
            }

        logger.warning(
            "Gateway order rejected: receipt=%s status=%d response=%s",
            receipt,
            response.status_code,
            response_data,
        )
        return {"success": False, "response": response_data}

    except requests.exceptions.Timeout as exc:
        logger.error("Gateway timeout: receipt=%s error=%s", receipt, str(exc))
        return {
            "success": False,
            "response": {"error": "timeout", "detail": str(exc)},
        }

    except requests.exceptions.RequestException as exc:
        logger.error("Gateway request error: receipt=%s error=%s", receipt, str(exc))
        return {
            "success": False,
            "response": {"error": "request_error", "detail": str(exc)},
        }

    except ValueError as exc:
        logger.error("Gateway returned invalid JSON: receipt=%s", receipt)
        return {
            "success": False,
            "response": {"error": "invalid_response", "detail": str(exc)},
        }
