"""Fiat currency map model."""

from __future__ import annotations

from typing import Any, Optional

from cmc_pro.transformers.common import CmcModel, validate_list


class FiatCurrency(CmcModel):
    id: int
    name: str
    symbol: str
    sign: Optional[str] = None


def transform_map(data: Any) -> list[FiatCurrency]:
    return validate_list(FiatCurrency, data)
