import os
import json
import uuid
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg2
from psycopg2.extras import RealDictCursor, Json

logger = logging.getLogger(__name__)

COLLECTIONS = [
    'users', 'products', 'store_items', 'transfers', 'orders',
    'notifications', 'mpesa_transactions'
]


class StoreError(Exception):
    """Raised when a collection cannot be read or written"""


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return uuid.uuid4().hex


class DocumentStore:
    """Collection-of-documents storage shared by every route group.

    Documents are plain dicts. The store assigns ``id`` and ``createdAt`` on
    insert; everything else is owned by the caller.
    """

    def __init__(self):
        self._locks = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, collection):
        with self._locks_guard:
            if collection not in self._locks:
                self._locks[collection] = threading.RLock()
            return self._locks[collection]

    @contextmanager
    def locked(self, collection):
        """Serialize a read-modify-write sequence on one collection"""
        with self._lock_for(collection):
            yield self

    def init(self):
        pass

    def all(self, collection):
        raise NotImplementedError

    def get(self, collection, doc_id):
        raise NotImplementedError

    def insert(self, collection, doc):
        raise NotImplementedError

    def update(self, collection, doc_id, changes):
        raise NotImplementedError

    def delete(self, collection, doc_id):
        raise NotImplementedError

    def find(self, collection, **equals):
        """Documents whose keys all hold the given values.

        A key must be present to match, so ``find(c, k=None)`` only returns
        documents with an explicit null, as JSONB containment does.
        """
        return [d for d in self.all(collection)
                if all(k in d and d[k] == v for k, v in equals.items())]

    def find_one(self, collection, **equals):
        matches = self.find(collection, **equals)
        return matches[0] if matches else None

    @staticmethod
    def _prepare(doc):
        prepared = dict(doc)
        prepared.setdefault('id', new_id())
        prepared.setdefault('createdAt', utcnow().isoformat())
        return prepared


class JsonStore(DocumentStore):
    """One JSON file per collection under ``data_dir``"""

    def __init__(self, data_dir):
        super().__init__()
        self.data_dir = data_dir

    def init(self):
        os.makedirs(self.data_dir, exist_ok=True)
        for collection in COLLECTIONS:
            path = self._path(collection)
            if not os.path.exists(path):
                self._save(collection, [])

    def _path(self, collection):
        return os.path.join(self.data_dir, f'{collection}.json')

    def _load(self, collection):
        path = self._path(collection)
        with self._lock_for(collection):
            if not os.path.exists(path):
                return []
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.error("Error loading %s: %s", path, e)
                raise StoreError(f'Could not read {collection}') from e

    def _save(self, collection, docs):
        path = self._path(collection)
        with self._lock_for(collection):
            try:
                os.makedirs(self.data_dir, exist_ok=True)
                # Write to temporary file first, then rename (atomic operation)
                temp_path = path + '.tmp'
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(docs, f, indent=2, default=str)
                os.replace(temp_path, path)
            except (IOError, OSError) as e:
                logger.error("Error saving %s: %s", path, e)
                raise StoreError(f'Could not write {collection}') from e

    def all(self, collection):
        return self._load(collection)

    def get(self, collection, doc_id):
        return next((d for d in self._load(collection) if d.get('id') == doc_id), None)

    def insert(self, collection, doc):
        with self.locked(collection):
            docs = self._load(collection)
            prepared = self._prepare(doc)
            docs.append(prepared)
            self._save(collection, docs)
            return prepared

    def update(self, collection, doc_id, changes):
        with self.locked(collection):
            docs = self._load(collection)
            doc = next((d for d in docs if d.get('id') == doc_id), None)
            if doc is None:
                return None
            for key, value in changes.items():
                if key not in ('id', 'createdAt'):
                    doc[key] = value
            self._save(collection, docs)
            return doc

    def delete(self, collection, doc_id):
        with self.locked(collection):
            docs = self._load(collection)
            doc = next((d for d in docs if d.get('id') == doc_id), None)
            if doc is None:
                return None
            self._save(collection, [d for d in docs if d.get('id') != doc_id])
            return doc


class PostgresStore(DocumentStore):
    """Documents kept as JSONB rows in a single ``documents`` table"""

    def __init__(self, database_url):
        super().__init__()
        self.database_url = database_url
        self._held = threading.local()

    def get_db_connection(self):
        """Get database connection"""
        try:
            return psycopg2.connect(self.database_url, cursor_factory=RealDictCursor)
        except psycopg2.Error as e:
            logger.error("Database connection error: %s", e)
            raise StoreError('Database unavailable') from e

    @contextmanager
    def _cursor(self):
        conn = self.get_db_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as e:
            logger.error("Database error: %s", e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def init(self):
        """Initialize database tables"""
        with self._cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection VARCHAR(64) NOT NULL,
                    id VARCHAR(64) NOT NULL,
                    data JSONB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS documents_data_idx ON documents USING GIN (data)")

    @contextmanager
    def locked(self, collection):
        # Thread lock for this process; advisory lock across worker processes.
        with self._lock_for(collection):
            depth = getattr(self._held, collection, 0)
            conn = None
            if depth == 0:
                conn = self.get_db_connection()
                conn.autocommit = True
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_advisory_lock(hashtext(%s))", (collection,))
            setattr(self._held, collection, depth + 1)
            try:
                yield self
            finally:
                setattr(self._held, collection, depth)
                if conn is not None:
                    try:
                        with conn.cursor() as cur:
                            cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (collection,))
                    finally:
                        conn.close()

    def all(self, collection):
        with self._cursor() as cur:
            cur.execute(
                "SELECT data FROM documents WHERE collection = %s ORDER BY created_at, id",
                (collection,))
            return [row['data'] for row in cur.fetchall()]

    def find(self, collection, **equals):
        if not equals:
            return self.all(collection)
        with self._cursor() as cur:
            cur.execute(
                "SELECT data FROM documents WHERE collection = %s AND data @> %s ORDER BY created_at, id",
                (collection, Json(equals)))
            return [row['data'] for row in cur.fetchall()]

    def get(self, collection, doc_id):
        with self._cursor() as cur:
            cur.execute("SELECT data FROM documents WHERE collection = %s AND id = %s",
                        (collection, doc_id))
            row = cur.fetchone()
            return row['data'] if row else None

    def insert(self, collection, doc):
        prepared = self._prepare(doc)
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO documents (collection, id, data) VALUES (%s, %s, %s) RETURNING data",
                (collection, prepared['id'], Json(prepared)))
            return cur.fetchone()['data']

    def update(self, collection, doc_id, changes):
        changes = {k: v for k, v in changes.items() if k not in ('id', 'createdAt')}
        with self._cursor() as cur:
            cur.execute(
                "UPDATE documents SET data = data || %s WHERE collection = %s AND id = %s RETURNING data",
                (Json(changes), collection, doc_id))
            row = cur.fetchone()
            return row['data'] if row else None

    def delete(self, collection, doc_id):
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM documents WHERE collection = %s AND id = %s RETURNING data",
                (collection, doc_id))
            row = cur.fetchone()
            return row['data'] if row else None


def get_store(config):
    """Postgres when DATABASE_URL is configured, JSON files otherwise"""
    if config.get('DATABASE_URL'):
        logger.info("Using PostgreSQL document storage")
        return PostgresStore(config['DATABASE_URL'])
    logger.info("Using file-based storage in %s", config['DATA_DIR'])
    return JsonStore(config['DATA_DIR'])
