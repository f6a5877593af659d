from wallets.utils.gateway import (
    is_mock_mode,
    is_mock_order,
    request_gateway_order,
    signature_for,
    to_subunits,
    verify_signature,
)

__all__ = [
    "is_mock_mode",
    "is_mock_order",
    "request_gateway_order",
    "signature_for",
    "to_subunits",
    "verify_signature",
]
