"""Single-file JSON documents for the low-traffic features.

Shirt voting/pre-orders and the merchandise catalog each live in one JSON
document that is read whole, mutated in memory and written back whole.
Writers in this process are serialised by one lock per document; nothing
coordinates separate processes, so deployments that need more than that
should move the collection into Supabase instead.
"""
from __future__ import annotations

import copy
import datetime as dt
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from . import messages

logger = logging.getLogger(__name__)

T = TypeVar("T")

VOTING_FILENAME = "camiseta-voting.json"
MERCHANDISE_FILENAME = "merchandise.json"

_locks: Dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


class DocumentError(RuntimeError):
    """Raised when a document cannot be read or written."""


def utc_now_iso() -> str:
    return dt.datetime.now(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


def _new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class JsonDocument:
    """One JSON document on disk with read-modify-write updates."""

    def __init__(self, path: Path, default_factory: Callable[[], Dict[str, Any]]) -> None:
        self.path = path
        self.default_factory = default_factory
        self._lock = _lock_for(path)

    def read(self) -> Dict[str, Any]:
        with self._lock:
            return self._load()

    def update(self, mutator: Callable[[Dict[str, Any]], T]) -> T:
        """Apply ``mutator`` to the document and persist the result.

        The mutator may raise to abort the update; nothing is written then.
        """
        with self._lock:
            data = self._load()
            result = mutator(data)
            self._stamp(data)
            self._write(data)
            return result

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            data = self.default_factory()
            self._stamp(data)
            self._write(data)
            logger.info("Initialised document %s", self.path)
            return data

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise DocumentError(f"Malformed JSON in {self.path}") from exc
        except OSError as exc:
            raise DocumentError(f"Failed to read {self.path}") from exc

        if not isinstance(data, dict):
            raise DocumentError(f"Unexpected document shape in {self.path}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise DocumentError(f"Failed to write {self.path}") from exc

    @staticmethod
    def _stamp(data: Dict[str, Any]) -> None:
        stats = data.get("stats")
        if not isinstance(stats, dict):
            stats = {}
            data["stats"] = stats
        stats["lastUpdated"] = utc_now_iso()


# ---------------------------------------------------------------------------
# Shirt design voting and pre-orders


def default_voting_document() -> Dict[str, Any]:
    now = dt.datetime.now(dt.UTC).replace(microsecond=0)
    voting_end = (now + dt.timedelta(days=60)).isoformat().replace("+00:00", "Z")
    orders_end = (now + dt.timedelta(days=75)).isoformat().replace("+00:00", "Z")
    return {
        "voting": {
            "active": True,
            "totalVotes": 0,
            "endDate": voting_end,
            "options": [
                {
                    "id": "design_1",
                    "name": "Dinnae seek mair – there’s nae mair tae be foun’",
                    "description": "Lema clásico de la peña en escocés",
                    "image": "/images/coleccionables/camiseta-1.png",
                    "votes": 0,
                    "voters": [],
                },
                {
                    "id": "design_2",
                    "name": "\"No busques más que no hay\"",
                    "description": "Lema clásico de la peña",
                    "image": "/images/coleccionables/camiseta-2.png",
                    "votes": 0,
                    "voters": [],
                },
            ],
        },
        "preOrders": {
            "active": True,
            "totalOrders": 0,
            "endDate": orders_end,
            "minimumOrders": 20,
            "orders": [],
        },
        "stats": {
            "lastUpdated": utc_now_iso(),
            "totalInteractions": 0,
        },
    }


class VotingBoard:
    """Shirt design votes and pre-orders, one vote and one order per e-mail."""

    def __init__(self, document: JsonDocument, clock: Callable[[], dt.datetime] | None = None) -> None:
        self.document = document
        self._clock = clock or (lambda: dt.datetime.now(dt.UTC))

    @classmethod
    def in_dir(cls, data_dir: Path) -> "VotingBoard":
        return cls(JsonDocument(data_dir / VOTING_FILENAME, default_voting_document))

    def snapshot(self) -> Dict[str, Any]:
        return self.document.read()

    def vote(self, design_id: str, voter: Dict[str, str]) -> Dict[str, Any]:
        email = voter["email"].strip().lower()

        def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            voting = data.setdefault("voting", {})
            self._ensure_open(voting, messages.VOTING_NOT_ACTIVE, messages.VOTING_PERIOD_ENDED)

            options: List[Dict[str, Any]] = voting.setdefault("options", [])
            for option in options:
                for existing in option.get("voters", []):
                    if str(existing.get("email", "")).lower() == email:
                        raise ValueError(messages.VOTING_ALREADY_VOTED)

            option = next((item for item in options if item.get("id") == design_id), None)
            if option is None:
                raise ValueError(messages.VOTING_DESIGN_NOT_FOUND)

            option["votes"] = int(option.get("votes", 0)) + 1
            option.setdefault("voters", []).append(
                {"name": voter["name"], "email": email, "votedAt": utc_now_iso()}
            )
            voting["totalVotes"] = int(voting.get("totalVotes", 0)) + 1
            self._count_interaction(data)
            return {"totalVotes": voting["totalVotes"]}

        result = self.document.update(apply)
        logger.info("Vote recorded for design %s", design_id)
        return result

    def pre_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        email = str(order["email"]).strip().lower()

        def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            pre_orders = data.setdefault("preOrders", {})
            self._ensure_open(pre_orders, messages.PRE_ORDER_NOT_ACTIVE, messages.PRE_ORDER_PERIOD_ENDED)

            orders: List[Dict[str, Any]] = pre_orders.setdefault("orders", [])
            if any(str(item.get("email", "")).lower() == email for item in orders):
                raise ValueError(messages.PRE_ORDER_ALREADY_EXISTS)

            record = {
                "id": _new_id("preorder"),
                **{key: value for key, value in order.items() if value is not None},
                "email": email,
                "submittedAt": utc_now_iso(),
                "status": "pending",
            }
            orders.append(record)
            pre_orders["totalOrders"] = int(pre_orders.get("totalOrders", 0)) + 1
            self._count_interaction(data)
            return {"orderId": record["id"], "totalOrders": pre_orders["totalOrders"]}

        result = self.document.update(apply)
        logger.info("Pre-order %s recorded", result["orderId"])
        return result

    def _ensure_open(self, section: Dict[str, Any], inactive: str, ended: str) -> None:
        if not section.get("active", False):
            raise ValueError(inactive)
        end_date = parse_timestamp(section.get("endDate"))
        if end_date is not None and self._clock() > end_date:
            raise ValueError(ended)

    @staticmethod
    def _count_interaction(data: Dict[str, Any]) -> None:
        stats = data.setdefault("stats", {})
        stats["totalInteractions"] = int(stats.get("totalInteractions", 0)) + 1


# ---------------------------------------------------------------------------
# Merchandise catalog


def default_merchandise_document() -> Dict[str, Any]:
    items = [
        {
            "id": "merch_001",
            "name": "Bufanda Peña Bética Escocesa",
            "description": "Bufanda oficial de la peña con los colores del Betis y el logo de Escocia.",
            "price": 15.99,
            "images": ["/images/merch/bufanda-1.jpg", "/images/merch/bufanda-2.jpg"],
            "category": "accessories",
            "sizes": [],
            "colors": ["Verde y Blanco"],
            "inStock": True,
            "featured": True,
        },
        {
            "id": "merch_002",
            "name": "Camiseta \"No busques más que no hay\"",
            "description": "Camiseta con el lema oficial de la peña. Diseño exclusivo con los colores béticos.",
            "price": 22.50,
            "images": ["/images/merch/camiseta-1.jpg"],
            "category": "clothing",
            "sizes": ["S", "M", "L", "XL", "XXL"],
            "colors": ["Verde", "Blanco"],
            "inStock": True,
            "featured": True,
        },
        {
            "id": "merch_003",
            "name": "Llavero Betis-Escocia",
            "description": "Llavero metálico con el escudo del Betis y la bandera de Escocia.",
            "price": 5.99,
            "images": ["/images/merch/llavero-1.jpg"],
            "category": "accessories",
            "sizes": [],
            "colors": ["Metálico"],
            "inStock": True,
            "featured": False,
        },
        {
            "id": "merch_004",
            "name": "Gorra \"Béticos en Escocia\"",
            "description": "Gorra ajustable con visera, perfecta para mostrar tu pasión bética.",
            "price": 18.99,
            "images": ["/images/merch/gorra-1.jpg"],
            "category": "clothing",
            "sizes": ["Ajustable"],
            "colors": ["Verde", "Blanco", "Negro"],
            "inStock": False,
            "featured": False,
        },
        {
            "id": "merch_005",
            "name": "Pin Coleccionable Polwarth",
            "description": "Pin metálico conmemorativo del Polwarth Tavern, nuestro hogar en Edimburgo.",
            "price": 4.50,
            "images": ["/images/merch/pin-1.jpg"],
            "category": "collectibles",
            "sizes": [],
            "colors": ["Dorado"],
            "inStock": True,
            "featured": True,
        },
    ]
    return {
        "items": items,
        "categories": ["clothing", "accessories", "collectibles"],
        "totalItems": len(items),
        "stats": {"lastUpdated": utc_now_iso()},
    }


class MerchandiseCatalog:
    def __init__(self, document: JsonDocument) -> None:
        self.document = document

    @classmethod
    def in_dir(cls, data_dir: Path) -> "MerchandiseCatalog":
        return cls(JsonDocument(data_dir / MERCHANDISE_FILENAME, default_merchandise_document))

    def list_items(
        self,
        category: Optional[str] = None,
        featured: bool = False,
        in_stock: bool = True,
    ) -> Dict[str, Any]:
        data = self.document.read()
        items = [item for item in data.get("items", []) if isinstance(item, dict)]

        if category and category != "all":
            items = [item for item in items if item.get("category") == category]
        if featured:
            items = [item for item in items if item.get("featured")]
        if in_stock:
            items = [item for item in items if item.get("inStock")]

        return {
            "items": items,
            "categories": list(data.get("categories", [])),
            "totalItems": len(items),
        }

    def get_item(self, item_id: str) -> Dict[str, Any]:
        for item in self.document.read().get("items", []):
            if isinstance(item, dict) and item.get("id") == item_id:
                return item
        raise LookupError(messages.PRODUCT_NOT_FOUND)

    def add_item(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = {"id": _new_id("merch"), **copy.deepcopy(fields)}

        def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            items = data.setdefault("items", [])
            items.append(record)
            self._sync_totals(data, record.get("category"))
            return record

        created = self.document.update(apply)
        logger.info("Merchandise item %s added (%s)", created["id"], created.get("category"))
        return created

    def update_item(self, item_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            item = self._find(data, item_id)
            for key, value in changes.items():
                if key != "id":
                    item[key] = copy.deepcopy(value)
            self._sync_totals(data, item.get("category"))
            return item

        return self.document.update(apply)

    def delete_item(self, item_id: str) -> Dict[str, Any]:
        def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            item = self._find(data, item_id)
            data["items"].remove(item)
            self._sync_totals(data, None)
            return item

        removed = self.document.update(apply)
        logger.info("Merchandise item %s deleted", item_id)
        return removed

    @staticmethod
    def _find(data: Dict[str, Any], item_id: str) -> Dict[str, Any]:
        for item in data.get("items", []):
            if isinstance(item, dict) and item.get("id") == item_id:
                return item
        raise LookupError(messages.PRODUCT_NOT_FOUND)

    @staticmethod
    def _sync_totals(data: Dict[str, Any], category: Optional[str]) -> None:
        data["totalItems"] = len(data.get("items", []))
        categories = data.setdefault("categories", [])
        if category and category not in categories:
            categories.append(category)
