"""Signing engine: one authentication scheme per venue."""

from .api_key import ApiKeyMultiSig
from .base import SigningScheme, normalize_private_key, validate_address
from .message import MessageSignatureAuth
from .rsa import RsaSignatureAuth, load_private_key
from .typed_data import (
    CTF_ORDER_V1,
    CtfOrder,
    OrderSchema,
    TypedDataDomain,
    TypedDataOrderSigning,
    scale_amounts,
)

__all__ = [
    "SigningScheme",
    "MessageSignatureAuth",
    "TypedDataOrderSigning",
    "RsaSignatureAuth",
    "ApiKeyMultiSig",
    "TypedDataDomain",
    "OrderSchema",
    "CtfOrder",
    "CTF_ORDER_V1",
    "scale_amounts",
    "load_private_key",
    "normalize_private_key",
    "validate_address",
]
