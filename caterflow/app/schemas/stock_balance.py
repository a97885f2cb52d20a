from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class StockBalanceRead(BaseModel):
    stock_item_id: int
    bin_id: int

    snapshot_quantity: Decimal
    snapshot_date: datetime | None
    inbound: Decimal
    outbound: Decimal

    quantity: Decimal  # brut, peut être < 0
    on_hand: Decimal   # jamais < 0

    model_config = ConfigDict(from_attributes=True)
