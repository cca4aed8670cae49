# scripts/seed_catalog.py
"""
Load purchasable items into catalog_items.

  DATABASE_URL=... python -m scripts.seed_catalog catalog.json

The JSON file is a list of {itemType, itemId, title, price, currency, isPublished}.
Without a file the demo catalog from app.py is loaded. Existing rows are updated.
"""
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

from models.base import Base, init_engine_and_session  # noqa: E402
from models.payments_store import SqlPaymentStore  # noqa: E402
from models.store import CatalogEntry  # noqa: E402
from services.payments.schemas import normalize_item_type  # noqa: E402


def load_items(path: str | None) -> list[CatalogEntry]:
    if not path:
        from app import DEMO_CATALOG
        return list(DEMO_CATALOG)

    rows = json.loads(Path(path).read_text(encoding="utf-8"))
    items = []
    for r in rows:
        price = r["price"]
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            raise ValueError(f"bad price for {r.get('itemId')}: {price!r}")
        items.append(CatalogEntry(
            item_type=normalize_item_type(r["itemType"]),
            item_id=str(r["itemId"]),
            title=r.get("title") or str(r["itemId"]),
            price=price,
            currency=(r.get("currency") or "INR").upper(),
            is_published=bool(r.get("isPublished", True)),
        ))
    return items


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    items = load_items(argv[0] if argv else None)

    engine, _ = init_engine_and_session()
    Base.metadata.create_all(engine, checkfirst=True)

    store = SqlPaymentStore()
    for item in items:
        store.upsert_catalog_item(item)
        print(f"[+] {item.item_type}/{item.item_id} {item.price} {item.currency}")
    print(f"[✓] {len(items)} catalog item(s) loaded")


if __name__ == "__main__":
    main()
