"""EIP-712 typed-data order signing for CTF exchange venues.

The domain separator, field order and type strings below are part of the
wire contract with the exchange contracts: changing any of them invalidates
every signature, so a new layout must ship as a new OrderSchema version.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import Any

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_account import Account
from eth_keys import keys
from eth_utils import keccak, to_checksum_address

from ..core.enums import Capability, OrderSide, SchemeKind
from ..core.exceptions import InvalidOrder, NotSupported
from ..models.credential import Credential, SignedPayload
from ..models.order import OrderRequest
from ..utils.price import is_valid_price
from .base import SigningScheme, normalize_private_key, validate_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
AMOUNT_SCALE = Decimal(1_000_000)

DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"

SIDE_VALUES = {OrderSide.BUY: 0, OrderSide.SELL: 1}


@dataclass(frozen=True)
class TypedDataDomain:
    """EIP-712 domain of one exchange contract deployment."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def __post_init__(self) -> None:
        validate_address(self.verifying_contract)

    def separator(self) -> bytes:
        return keccak(
            encode(
                ["bytes32", "bytes32", "bytes32", "uint256", "address"],
                [
                    keccak(text=DOMAIN_TYPE),
                    keccak(text=self.name),
                    keccak(text=self.version),
                    self.chain_id,
                    to_checksum_address(self.verifying_contract),
                ],
            )
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


@dataclass(frozen=True)
class OrderSchema:
    """Versioned struct layout: ordered (name, solidity type) fields."""

    version: str
    primary_type: str
    fields: tuple[tuple[str, str], ...]

    @property
    def type_string(self) -> str:
        members = ",".join(f"{kind} {name}" for name, kind in self.fields)
        return f"{self.primary_type}({members})"

    @property
    def type_hash(self) -> bytes:
        return keccak(text=self.type_string)

    def coerce(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Schema values as the encoder takes them.

        Accepts the JSON body form too, where uint fields are decimal strings.

        Raises:
            InvalidOrder: on a missing field or a value of the wrong shape
        """
        missing = [name for name, _ in self.fields if name not in values]
        if missing:
            raise InvalidOrder(f"Order is missing fields: {', '.join(missing)}")
        coerced = {}
        for name, kind in self.fields:
            value = values[name]
            try:
                if kind == "address":
                    value = to_checksum_address(value)
                elif kind.startswith("uint"):
                    if isinstance(value, str):
                        value = int(value, 10)
                    elif isinstance(value, bool) or not isinstance(value, int):
                        raise InvalidOrder(f"Invalid {kind} {name}: {value!r}")
            except (TypeError, ValueError) as e:
                raise InvalidOrder(f"Invalid {kind} {name}: {value!r}") from e
            coerced[name] = value
        return coerced

    def struct_hash(self, values: Mapping[str, Any]) -> bytes:
        data = self.coerce(values)
        types = ["bytes32"] + [kind for _, kind in self.fields]
        try:
            encoded = encode(types, [self.type_hash] + [data[name] for name, _ in self.fields])
        except EncodingError as e:
            raise InvalidOrder(f"Cannot encode {self.primary_type}: {e}") from e
        return keccak(encoded)


CTF_ORDER_V1 = OrderSchema(
    version="ctf-order-v1",
    primary_type="Order",
    fields=(
        ("salt", "uint256"),
        ("maker", "address"),
        ("signer", "address"),
        ("taker", "address"),
        ("tokenId", "uint256"),
        ("makerAmount", "uint256"),
        ("takerAmount", "uint256"),
        ("expiration", "uint256"),
        ("nonce", "uint256"),
        ("feeRateBps", "uint256"),
        ("side", "uint8"),
        ("signatureType", "uint8"),
    ),
)


@dataclass(frozen=True)
class CtfOrder:
    """Order struct as the exchange contract hashes it."""

    salt: int
    maker: str
    signer: str
    taker: str
    token_id: int
    maker_amount: int
    taker_amount: int
    expiration: int
    nonce: int
    fee_rate_bps: int
    side: OrderSide
    signature_type: int

    def values(self) -> dict[str, Any]:
        """Struct values keyed by schema field name."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "signer": self.signer,
            "taker": self.taker,
            "tokenId": self.token_id,
            "makerAmount": self.maker_amount,
            "takerAmount": self.taker_amount,
            "expiration": self.expiration,
            "nonce": self.nonce,
            "feeRateBps": self.fee_rate_bps,
            "side": SIDE_VALUES[self.side],
            "signatureType": self.signature_type,
        }

    def to_payload(self) -> dict[str, Any]:
        """JSON body representation (uint256 values as decimal strings)."""
        return {
            "salt": str(self.salt),
            "maker": self.maker,
            "signer": self.signer,
            "taker": self.taker,
            "tokenId": str(self.token_id),
            "makerAmount": str(self.maker_amount),
            "takerAmount": str(self.taker_amount),
            "expiration": str(self.expiration),
            "nonce": str(self.nonce),
            "feeRateBps": str(self.fee_rate_bps),
            "side": SIDE_VALUES[self.side],
            "signatureType": self.signature_type,
        }


def scale_amounts(side: OrderSide, price: Decimal, size: Decimal) -> tuple[int, int]:
    """(makerAmount, takerAmount) in 1e6 base units.

    BUY gives collateral for shares and rounds the collateral up; SELL gives
    shares for collateral and rounds the collateral down. Share amounts
    always round down.
    """
    shares = int((size * AMOUNT_SCALE).to_integral_value(rounding=ROUND_FLOOR))
    notional = price * size * AMOUNT_SCALE
    if side is OrderSide.BUY:
        collateral = int(notional.to_integral_value(rounding=ROUND_CEILING))
        return collateral, shares
    collateral = int(notional.to_integral_value(rounding=ROUND_FLOOR))
    return shares, collateral


def generate_salt() -> int:
    """Timestamp-based salt (milliseconds * 1000)."""
    return int(time.time() * 1000) * 1000


class TypedDataOrderSigning(SigningScheme):
    """Sign CTF exchange orders with an account key.

    Public access needs no credential, so ``authenticate`` returns an empty
    one; the value of this scheme is ``sign``.
    """

    kind = SchemeKind.TYPED_DATA
    capabilities = frozenset({Capability.SIGN_TYPED_DATA, Capability.SIGN_DIGEST})

    def __init__(
        self,
        private_key: str,
        domain: TypedDataDomain,
        *,
        schema: OrderSchema = CTF_ORDER_V1,
        funder: str | None = None,
        signature_type: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        key = normalize_private_key(private_key)
        self._key = keys.PrivateKey(bytes.fromhex(key[2:]))
        self.address = Account.from_key(key).address
        self.domain = domain
        self.schema = schema
        self.funder = validate_address(funder) if funder else None
        self.signature_type = signature_type
        self._separator = domain.separator()

    async def _issue(self) -> Credential:
        return Credential.empty(self.kind)

    def digest(self, values: Mapping[str, Any]) -> bytes:
        """``keccak256(0x19 0x01 || domainSeparator || structHash)``."""
        return keccak(b"\x19\x01" + self._separator + self.schema.struct_hash(values))

    def sign_digest(self, digest: bytes) -> str:
        """Sign a 32-byte digest; returns 0x + r || s || v (v in {27, 28})."""
        if len(digest) != 32:
            raise NotSupported("sign_digest expects a 32-byte digest")
        sig = self._key.sign_msg_hash(digest)
        raw = sig.r.to_bytes(32, "big") + sig.s.to_bytes(32, "big") + bytes([sig.v + 27])
        return "0x" + raw.hex()

    def build_order(
        self,
        request: OrderRequest,
        *,
        token_id: str | int | None = None,
        expiration: int = 0,
        nonce: int = 0,
        fee_rate_bps: int = 0,
        salt: int | None = None,
        taker: str = ZERO_ADDRESS,
        tick_size: Decimal | None = None,
    ) -> CtfOrder:
        """Build the contract order struct for ``request``.

        Raises:
            InvalidOrder: if the token id is missing, the price is off the
                market's tick grid or the amounts round to zero
        """
        raw_token = token_id if token_id is not None else request.token_id
        if raw_token is None:
            raise InvalidOrder("Typed-data orders need a token id")
        try:
            token = int(raw_token)
        except (TypeError, ValueError) as e:
            raise InvalidOrder(f"Invalid token id: {raw_token!r}") from e
        if tick_size is not None and not is_valid_price(request.price, tick_size):
            raise InvalidOrder(f"Price {request.price} is not a multiple of tick size {tick_size}")
        maker_amount, taker_amount = scale_amounts(request.side, request.price, request.size)
        if maker_amount <= 0 or taker_amount <= 0:
            raise InvalidOrder("Order amounts round to zero")
        return CtfOrder(
            salt=generate_salt() if salt is None else salt,
            maker=self.funder or self.address,
            signer=self.address,
            taker=taker,
            token_id=token,
            maker_amount=maker_amount,
            taker_amount=taker_amount,
            expiration=expiration,
            nonce=nonce,
            fee_rate_bps=fee_rate_bps,
            side=request.side,
            signature_type=self.signature_type,
        )

    def sign_order(self, order: CtfOrder) -> SignedPayload:
        digest = self.digest(order.values())
        return SignedPayload(
            scheme=self.kind,
            payload=order.to_payload(),
            signature=self.sign_digest(digest),
            signer=self.address,
            headers={},
        )

    def sign(self, payload: Mapping[str, Any]) -> SignedPayload:
        """Sign a struct given as schema-keyed values (``side`` as 0/1).

        The JSON body from ``CtfOrder.to_payload`` is accepted as is.
        """
        values = dict(payload)
        digest = self.digest(values)
        return SignedPayload(
            scheme=self.kind,
            payload=values,
            signature=self.sign_digest(digest),
            signer=self.address,
        )
