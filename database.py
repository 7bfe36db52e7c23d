"""
Storage layer.

Business logic talks to a Store, a tiny document interface over named
collections ("users", "products", "orders"). Three backends are provided:

- MemoryStore: plain dicts, for tests and the serverless demo.
- JsonFileStore: one JSON array per collection, rewritten whole on every
  write after copying the previous version to ``<file>.backup``.
- MongoStore: MongoDB via pymongo, documents keyed by their ``id`` field.

Ids come from per-collection counters that are persisted separately from the
collection contents, so deleting a record never frees its id for reuse.
"""
import copy
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import MongoClient, ReturnDocument

import config
from errors import StoreError

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "products", "orders")


class Store:
    def get(self, collection: str, doc_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def list(self, collection: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def put(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace the document with the same ``id``."""
        raise NotImplementedError

    def delete(self, collection: str, doc_id: int) -> bool:
        raise NotImplementedError

    def next_id(self, collection: str) -> int:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return type(self).__name__


class MemoryStore(Store):
    def __init__(self, data: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._data: Dict[str, Dict[int, Dict[str, Any]]] = {c: {} for c in COLLECTIONS}
        self._counters: Dict[str, int] = {}
        for collection, docs in (data or {}).items():
            for doc in docs:
                self.put(collection, doc)

    def _collection(self, collection: str) -> Dict[int, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def get(self, collection, doc_id):
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def list(self, collection):
        return [copy.deepcopy(d) for d in self._collection(collection).values()]

    def put(self, collection, doc):
        self._collection(collection)[doc["id"]] = copy.deepcopy(doc)
        # ids inserted explicitly (seeds, fixtures) must never be handed out again
        self._counters[collection] = max(self._counters.get(collection, 0), doc["id"])
        return doc

    def delete(self, collection, doc_id):
        return self._collection(collection).pop(doc_id, None) is not None

    def next_id(self, collection):
        self._counters[collection] = self._counters.get(collection, 0) + 1
        return self._counters[collection]


class JsonFileStore(Store):
    COUNTERS_FILE = "counters.json"

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)

    def _path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def _read(self, filename: str, default: Any) -> Any:
        path = self._path(filename)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error reading %s: %s", path, e)
            raise StoreError(f"Could not read {filename}")

    def _write(self, filename: str, data: Any) -> None:
        path = self._path(filename)
        try:
            if os.path.exists(path):
                shutil.copyfile(path, f"{path}.backup")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            logger.error("Error writing %s: %s", path, e)
            raise StoreError(f"Could not write {filename}")
        logger.debug("Wrote %s", path)

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        return self._read(f"{collection}.json", [])

    def get(self, collection, doc_id):
        for doc in self._load(collection):
            if doc.get("id") == doc_id:
                return doc
        return None

    def list(self, collection):
        return self._load(collection)

    def put(self, collection, doc):
        docs = self._load(collection)
        for i, existing in enumerate(docs):
            if existing.get("id") == doc["id"]:
                docs[i] = doc
                break
        else:
            docs.append(doc)
        self._write(f"{collection}.json", docs)
        return doc

    def delete(self, collection, doc_id):
        docs = self._load(collection)
        remaining = [d for d in docs if d.get("id") != doc_id]
        if len(remaining) == len(docs):
            return False
        self._write(f"{collection}.json", remaining)
        return True

    def next_id(self, collection):
        counters = self._read(self.COUNTERS_FILE, {})
        if collection not in counters:
            # files written before counters existed: continue after the highest id
            counters[collection] = max((d.get("id", 0) for d in self._load(collection)), default=0)
        counters[collection] += 1
        self._write(self.COUNTERS_FILE, counters)
        return counters[collection]


class MongoStore(Store):
    COUNTERS = "counters"

    def __init__(self, database):
        self.db = database

    @classmethod
    def from_url(cls, url: str, name: str) -> "MongoStore":
        return cls(MongoClient(url)[name])

    def get(self, collection, doc_id):
        return self.db[collection].find_one({"id": doc_id}, {"_id": 0})

    def list(self, collection):
        return list(self.db[collection].find({}, {"_id": 0}).sort("id", 1))

    def put(self, collection, doc):
        self.db[collection].replace_one({"id": doc["id"]}, dict(doc), upsert=True)
        return doc

    def delete(self, collection, doc_id):
        return self.db[collection].delete_one({"id": doc_id}).deleted_count > 0

    def next_id(self, collection):
        counter = self.db[self.COUNTERS].find_one_and_update(
            {"_id": collection},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]


_store: Optional[Store] = None


def create_store(backend: Optional[str] = None) -> Store:
    backend = (backend or config.STORE_BACKEND).lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "json":
        return JsonFileStore(config.DATA_DIR)
    if backend == "mongo":
        if not config.DATABASE_URL:
            raise StoreError("DATABASE_URL is required for the mongo backend")
        return MongoStore.from_url(config.DATABASE_URL, config.DATABASE_NAME)
    raise StoreError(f"Unknown store backend: {backend}")


def get_store() -> Store:
    global _store
    if _store is None:
        _store = create_store()
        logger.info("Using %s", _store.name)
    return _store


# ---------- Demo data ----------

DEMO_PRODUCTS = [
    {"name": "Smartphone Samsung Galaxy S24", "price": 5999000, "category": "Electronics", "stock": 10, "featured": True,
     "description": "Flagship smartphone with a top-tier camera and high performance",
     "image": "https://images.pexels.com/photos/788946/pexels-photo-788946.jpeg?auto=compress&cs=tinysrgb&w=400&h=400&dpr=1"},
    {"name": "Laptop Gaming ASUS ROG", "price": 15999000, "category": "Electronics", "stock": 5, "featured": True,
     "description": "Gaming laptop with high-end specifications for gamers",
     "image": "https://images.pexels.com/photos/2047905/pexels-photo-2047905.jpeg?auto=compress&cs=tinysrgb&w=400&h=400&dpr=1"},
    {"name": "Nike Air Sneakers", "price": 899000, "category": "Fashion", "stock": 20, "featured": False,
     "description": "Premium quality sneakers with a modern design",
     "image": "https://images.pexels.com/photos/2529148/pexels-photo-2529148.jpeg?auto=compress&cs=tinysrgb&w=400&h=400&dpr=1"},
    {"name": "Apple Watch Series 9", "price": 2499000, "category": "Electronics", "stock": 15, "featured": True,
     "description": "Smart watch with complete health features and notifications",
     "image": "https://images.pexels.com/photos/437037/pexels-photo-437037.jpeg?auto=compress&cs=tinysrgb&w=400&h=400&dpr=1"},
    {"name": "Ceramic Dinner Set", "price": 749000, "category": "Home", "stock": 12, "featured": False,
     "description": "Twelve piece ceramic dinner set for everyday use",
     "image": "https://picsum.photos/400/400?random=6"},
    {"name": "Yoga Mat Pro", "price": 299000, "category": "Sports", "stock": 30, "featured": False,
     "description": "Non-slip yoga mat with extra cushioning",
     "image": "https://picsum.photos/400/400?random=7"},
]

DEMO_USERS = [
    {"username": "admin", "email": "admin@alandstore.com", "password": "admin123", "fullName": "Administrator", "role": "admin"},
    {"username": "user", "email": "user@alandstore.com", "password": "user123", "fullName": "Demo User", "role": "user"},
]


def seed_demo_data(store: Store) -> Dict[str, int]:
    """Create demo accounts and products in empty collections."""
    from auth import hash_password

    now = datetime.now(timezone.utc).isoformat()
    created = {"users": 0, "products": 0}
    if not store.list("users"):
        for u in DEMO_USERS:
            store.put("users", {
                "id": store.next_id("users"),
                "username": u["username"],
                "email": u["email"],
                "passwordHash": hash_password(u["password"]),
                "fullName": u["fullName"],
                "role": u["role"],
                "isActive": True,
                "createdAt": now,
                "lastLogin": None,
            })
            created["users"] += 1
    if not store.list("products"):
        for p in DEMO_PRODUCTS:
            store.put("products", {
                "id": store.next_id("products"),
                **p,
                "isActive": True,
                "createdAt": now,
                "updatedAt": now,
                "createdBy": None,
            })
            created["products"] += 1
    if any(created.values()):
        logger.info("Seeded demo data: %s", created)
    return created
