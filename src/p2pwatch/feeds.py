"""Listing model shared by the fetch client and the poll controller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Listing:
    """One P2P offer as returned by the online-items endpoint."""

    id: Optional[str]
    nick_name: str
    price: str  # decimal as text, parsed lazily by pricing.parse_price
    price_type: int = 0
    currency_id: str = ""
    token_id: str = ""
    min_amount: str = ""
    max_amount: str = ""
    payments: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> "Listing":
        raw_id = item.get("id")
        payments = item.get("payments")
        if not isinstance(payments, (list, tuple)):
            payments = ()
        try:
            price_type = int(item.get("priceType") or 0)
        except (TypeError, ValueError):
            price_type = 0
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            nick_name=_text(item.get("nickName")),
            price=_text(item.get("price")),
            price_type=price_type,
            currency_id=_text(item.get("currencyId")),
            token_id=_text(item.get("tokenId")),
            min_amount=_text(item.get("minAmount")),
            max_amount=_text(item.get("maxAmount")),
            payments=tuple(str(method) for method in payments),
        )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = ["Listing"]
