"""
Database connection

MongoDB client shared by the whole app. Settings come from the environment
(a local .env file is honoured):

- DATABASE_URL  - MongoDB connection string. Settlements use multi-document
                  transactions, so this must point at a replica set or
                  sharded cluster.
- DATABASE_NAME - database to use
- TRANSACTION_COMMIT_TIMEOUT_MS - upper bound for a settlement commit
"""

import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
TRANSACTION_COMMIT_TIMEOUT_MS = int(os.getenv("TRANSACTION_COMMIT_TIMEOUT_MS", "5000"))

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    # tz_aware so created_at comes back as an aware datetime
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data, database=None) -> str:
    """Insert a document (dict or Pydantic model) with timestamps and return its id."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available")
    doc = data.model_dump() if hasattr(data, "model_dump") else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)

