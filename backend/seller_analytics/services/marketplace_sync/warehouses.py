from __future__ import annotations

import threading
from typing import Iterable, Tuple

from sqlalchemy.orm import Session

from seller_analytics.models_sqlalchemy.models import Warehouse
from seller_analytics.services.marketplace_client import WarehouseSummary
from seller_analytics.utils.logger import logger

# Every workspace fetches the same marketplace-wide warehouse list. Parallel
# warehouse tasks would race on inserting the same ids, so writes go through
# one lock, held until the caller's commit.
_upsert_lock = threading.Lock()


def warehouse_write_lock() -> threading.Lock:
    return _upsert_lock


def upsert_warehouses(db: Session, warehouses: Iterable[WarehouseSummary]) -> Tuple[int, int]:
    """Create or update warehouses by external id. Returns ``(created, updated)``.

    Entries without id or name are skipped. Flushes, does not commit.
    """
    created = updated = skipped = 0
    for summary in warehouses:
        if summary.id is None or not summary.name:
            skipped += 1
            continue
        warehouse = db.get(Warehouse, summary.id)
        if warehouse is None:
            warehouse = Warehouse(id=summary.id)
            db.add(warehouse)
            created += 1
        else:
            updated += 1
        warehouse.name = summary.name
        warehouse.address = summary.address
        warehouse.city = summary.city
        warehouse.longitude = summary.longitude
        warehouse.latitude = summary.latitude
        warehouse.cargo_type = summary.cargo_type
        warehouse.delivery_type = summary.delivery_type
        warehouse.federal_district = summary.federal_district
        warehouse.selected = summary.selected
        db.flush()

    if skipped:
        logger.warning(f"Skipped {skipped} warehouses without id or name")
    return created, updated
