"""Storage backends for attachment payloads and complaint records."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import boto3
import psycopg2
import psycopg2.extras
import psycopg2.pool
import requests
from botocore.exceptions import ClientError
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import StorageTargetConfig
from .interfaces import ComplaintStore, ObjectStore
from .models import ComplaintRecord, StoredObject, UploadBody

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "complaints-media"


def _join_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{quote(path)}"


class LocalFilesystemObjectStore(ObjectStore):
    def __init__(self, config: StorageTargetConfig) -> None:
        base_path = config.params.get("base_path")
        if not base_path:
            raise ValueError("LocalFilesystemObjectStore requires base_path param")
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._public_base_url = config.params.get("public_base_url")

    def upload(self, path: str, body: UploadBody, content_type: str) -> StoredObject:
        target = self._base_path / path
        target.parent.mkdir(parents=True, exist_ok=True)
        # "xb" refuses to overwrite a path that is already taken
        with open(target, "xb") as handle:
            handle.write(body.read_bytes())
        public_url = _join_url(self._public_base_url, path) if self._public_base_url else None
        return StoredObject(path=path, public_url=public_url)


class InMemoryObjectStore(ObjectStore):
    """Keeps payloads in a dict; useful for dry runs."""

    def __init__(self, config: Optional[StorageTargetConfig] = None) -> None:
        params = config.params if config else {}
        self._public_base_url = params.get("public_base_url", "memory://attachments")
        self._lock = threading.Lock()
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    def upload(self, path: str, body: UploadBody, content_type: str) -> StoredObject:
        data = body.read_bytes()
        with self._lock:
            if path in self.objects:
                raise FileExistsError(path)
            self.objects[path] = (data, content_type)
        public_url = _join_url(self._public_base_url, path) if self._public_base_url else None
        return StoredObject(path=path, public_url=public_url)


class S3ObjectStore(ObjectStore):
    """
    S3 object store for complaint attachments.

    Features:
    - Conditional writes (If-None-Match) so an existing key is never replaced
    - Multipart uploads for in-memory payloads over 5MB
    - Streaming uploads for file-backed payloads
    - Automatic retries with exponential backoff
    - Server-side encryption (SSE-KMS or SSE-S3)
    """

    MULTIPART_THRESHOLD = 5 * 1024 * 1024
    MULTIPART_CHUNKSIZE = 8 * 1024 * 1024

    def __init__(self, config: StorageTargetConfig) -> None:
        """
        Initialize S3 object store.

        Required params:
        - bucket: Bucket holding complaint attachments

        Optional params:
        - region: AWS region (default: us-east-1)
        - kms_key_id: KMS key ARN for encryption (if not provided, uses SSE-S3)
        - endpoint_url: Custom S3 endpoint (for LocalStack testing)
        - public_base_url: Base URL under which stored keys are publicly readable
        - ensure_bucket: Create and configure the bucket if missing (default: True)
        """
        if "bucket" not in config.params:
            raise ValueError("S3ObjectStore requires 'bucket' in params")

        self._bucket_name = config.params["bucket"]
        self._region = config.params.get("region", "us-east-1")
        self._kms_key_id = config.params.get("kms_key_id")
        self._public_base_url = config.params.get("public_base_url")

        self._s3_client = boto3.client(
            "s3",
            region_name=self._region,
            endpoint_url=config.params.get("endpoint_url"),
        )

        if config.params.get("ensure_bucket", True):
            self._ensure_bucket_configured()

        logger.info(
            "Initialized S3ObjectStore for bucket=%s, region=%s",
            self._bucket_name,
            self._region,
        )

    def _ensure_bucket_configured(self) -> None:
        try:
            self._s3_client.head_bucket(Bucket=self._bucket_name)
            logger.debug("Bucket %s already exists", self._bucket_name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code not in ("404", "NoSuchBucket"):
                raise
            self._create_bucket()

    def _create_bucket(self) -> None:
        create_bucket_config = {}
        # For regions other than us-east-1, we need LocationConstraint
        if self._region != "us-east-1":
            create_bucket_config["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        self._s3_client.create_bucket(Bucket=self._bucket_name, **create_bucket_config)
        logger.info("Created S3 bucket: %s", self._bucket_name)
        self._enable_bucket_encryption()

    def _enable_bucket_encryption(self) -> None:
        if self._kms_key_id:
            default = {"SSEAlgorithm": "aws:kms", "KMSMasterKeyID": self._kms_key_id}
        else:
            default = {"SSEAlgorithm": "AES256"}
        try:
            self._s3_client.put_bucket_encryption(
                Bucket=self._bucket_name,
                ServerSideEncryptionConfiguration={
                    "Rules": [{"ApplyServerSideEncryptionByDefault": default, "BucketKeyEnabled": True}]
                },
            )
            logger.info("Enabled encryption for bucket: %s", self._bucket_name)
        except ClientError as e:
            logger.warning("Failed to enable encryption: %s", e)

    @retry(
        retry=retry_if_not_exception_type(FileExistsError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def upload(self, path: str, body: UploadBody, content_type: str) -> StoredObject:
        try:
            if body.is_file:
                with body.file_path.open("rb") as handle:
                    self._put(path, handle, content_type)
            else:
                content = body.read_bytes()
                if len(content) > self.MULTIPART_THRESHOLD:
                    self._multipart_upload(path, content, content_type)
                else:
                    self._put(path, content, content_type)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "ConditionalRequestConflict", "412"):
                raise FileExistsError(f"s3://{self._bucket_name}/{path} already exists") from e
            logger.error("Failed to upload %s: %s", path, e)
            raise
        return StoredObject(path=path, public_url=self._confirmed_url(path))

    def _encryption_params(self) -> Dict[str, str]:
        if self._kms_key_id:
            return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self._kms_key_id}
        return {}

    def _put(self, key: str, content, content_type: str) -> None:
        self._s3_client.put_object(
            Bucket=self._bucket_name,
            Key=key,
            Body=content,
            ContentType=content_type,
            IfNoneMatch="*",
            **self._encryption_params(),
        )
        logger.debug("Uploaded %s to S3", key)

    def _multipart_upload(self, key: str, content: bytes, content_type: str) -> None:
        mpu = self._s3_client.create_multipart_upload(
            Bucket=self._bucket_name,
            Key=key,
            ContentType=content_type,
            **self._encryption_params(),
        )
        upload_id = mpu["UploadId"]

        try:
            parts = []
            part_number = 1
            offset = 0

            while offset < len(content):
                chunk = content[offset : offset + self.MULTIPART_CHUNKSIZE]
                response = self._s3_client.upload_part(
                    Bucket=self._bucket_name,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=chunk,
                )
                parts.append({"PartNumber": part_number, "ETag": response["ETag"]})
                part_number += 1
                offset += self.MULTIPART_CHUNKSIZE

            self._s3_client.complete_multipart_upload(
                Bucket=self._bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
                IfNoneMatch="*",
            )
            logger.debug(
                "Completed multipart upload for %s (%d bytes, %d parts)",
                key,
                len(content),
                len(parts),
            )
        except Exception as e:
            self._s3_client.abort_multipart_upload(Bucket=self._bucket_name, Key=key, UploadId=upload_id)
            logger.error("Aborted multipart upload for %s: %s", key, e)
            raise

    def _confirmed_url(self, key: str) -> Optional[str]:
        """Public URL for ``key``, only once S3 confirms the object exists."""
        if not self._public_base_url:
            return None
        try:
            self._s3_client.head_object(Bucket=self._bucket_name, Key=key)
        except ClientError as e:
            logger.warning("Could not confirm %s after upload: %s", key, e)
            return None
        return _join_url(self._public_base_url, key)


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage bucket accessed through its REST API."""

    def __init__(self, config: StorageTargetConfig) -> None:
        """
        Required params:
        - url: Project URL, e.g. https://xyz.supabase.co
        - key: Service role or anon key

        Optional params:
        - bucket: Storage bucket (default: complaints-media)
        - public: Whether the bucket serves public URLs (default: False)
        - timeout: Request timeout in seconds (default: 30)
        """
        for param in ("url", "key"):
            if not config.params.get(param):
                raise ValueError(f"SupabaseObjectStore requires '{param}' in params")
        self._url = config.params["url"].rstrip("/")
        self._key = config.params["key"]
        self._bucket = config.params.get("bucket", DEFAULT_BUCKET)
        self._public = bool(config.params.get("public", False))
        self._timeout = float(config.params.get("timeout", 30))
        self._session = requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {self._key}", "apikey": self._key})

    @retry(
        retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def upload(self, path: str, body: UploadBody, content_type: str) -> StoredObject:
        url = f"{self._url}/storage/v1/object/{self._bucket}/{quote(path)}"
        headers = {"Content-Type": content_type, "x-upsert": "false"}
        if body.is_file:
            with body.file_path.open("rb") as handle:
                response = self._session.post(url, data=handle, headers=headers, timeout=self._timeout)
        else:
            response = self._session.post(url, data=body.read_bytes(), headers=headers, timeout=self._timeout)

        if response.status_code == 409:
            raise FileExistsError(f"{self._bucket}/{path} already exists")
        response.raise_for_status()

        stored_key = response.json().get("Key")
        public_url = None
        if self._public and stored_key == f"{self._bucket}/{path}":
            public_url = f"{self._url}/storage/v1/object/public/{self._bucket}/{quote(path)}"
        return StoredObject(path=path, public_url=public_url)


def registration_number(record: ComplaintRecord) -> str:
    return f"REG{int(record.submitted_at.timestamp() * 1000) % 1_000_000:06d}"


def _initial_updates(record: ComplaintRecord) -> List[Dict[str, str]]:
    return [
        {
            "date": record.submitted_at.date().isoformat(),
            "status": "Submitted",
            "note": "Issue reported and registered",
        }
    ]


class InMemoryComplaintStore(ComplaintStore):
    def __init__(self, config: Optional[StorageTargetConfig] = None) -> None:
        self.rows: Dict[str, Dict[str, object]] = {}

    def insert(self, record: ComplaintRecord) -> Dict[str, object]:
        existing = self.rows.get(record.draft_id)
        if existing is not None:
            return dict(existing)
        row = record.to_dict()
        row["reg_number"] = registration_number(record)
        row["updates"] = _initial_updates(record)
        self.rows[record.draft_id] = row
        return dict(row)


class SqliteComplaintStore(ComplaintStore):
    def __init__(self, config: StorageTargetConfig) -> None:
        path = config.params.get("path")
        if not path:
            raise ValueError("SqliteComplaintStore requires path param")
        self._path = Path(path)
        if self._path.parent:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS complaints (
                    id TEXT PRIMARY KEY,
                    draft_id TEXT NOT NULL UNIQUE,
                    reg_number TEXT NOT NULL,
                    user_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT,
                    main_category TEXT,
                    sub_category TEXT,
                    specific_issue TEXT,
                    city TEXT,
                    department TEXT,
                    priority TEXT,
                    status TEXT NOT NULL,
                    location TEXT,
                    latitude REAL,
                    longitude REAL,
                    location_source TEXT,
                    reporter_json TEXT,
                    attachments_json TEXT NOT NULL,
                    attachments_count INTEGER NOT NULL,
                    updates_json TEXT NOT NULL,
                    submitted_at TEXT NOT NULL
                )
                """
            )

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def insert(self, record: ComplaintRecord) -> Dict[str, object]:
        data = record.to_dict()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO complaints (
                    id, draft_id, reg_number, user_id, title, description,
                    category, main_category, sub_category, specific_issue,
                    city, department, priority, status, location, latitude,
                    longitude, location_source, reporter_json, attachments_json,
                    attachments_count, updates_json, submitted_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"],
                    data["draft_id"],
                    registration_number(record),
                    data["user_id"],
                    data["title"],
                    data["description"],
                    data["category"],
                    data["main_category"],
                    data["sub_category"],
                    data["specific_issue"],
                    data["city"],
                    data["department"],
                    data["priority"],
                    data["status"],
                    data["location"],
                    data["latitude"],
                    data["longitude"],
                    data["location_source"],
                    json.dumps(data["reporter"]),
                    json.dumps(data["attachments"]),
                    data["attachments_count"],
                    json.dumps(_initial_updates(record)),
                    data["submitted_at"],
                ),
            )
            row = conn.execute("SELECT * FROM complaints WHERE draft_id = ?", (record.draft_id,)).fetchone()
        return self._row_to_dict(row)

    def get(self, complaint_id: str) -> Optional[Dict[str, object]]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM complaints WHERE id = ?", (complaint_id,)).fetchone()
        return self._row_to_dict(row) if row else None

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, object]:
        result = dict(row)
        result["reporter"] = json.loads(result.pop("reporter_json") or "{}")
        result["attachments"] = json.loads(result.pop("attachments_json"))
        result["updates"] = json.loads(result.pop("updates_json"))
        return result


class PostgresComplaintStore(ComplaintStore):
    """
    PostgreSQL complaint store with connection pooling.

    Features:
    - Connection pooling
    - JSONB attachments and status history
    - Idempotent insert keyed by draft_id
    """

    def __init__(self, config: StorageTargetConfig) -> None:
        """
        Initialize PostgreSQL complaint store.

        Required params:
        - database: Database name
        - user: Database user
        - password: Database password

        Optional params:
        - host: PostgreSQL host (default: localhost)
        - port: PostgreSQL port (default: 5432)
        - min_connections: Minimum pool size (default: 1)
        - max_connections: Maximum pool size (default: 5)
        """
        for param in ("database", "user", "password"):
            if param not in config.params:
                raise ValueError(f"PostgresComplaintStore requires '{param}' in params")

        self._host = config.params.get("host", "localhost")
        self._database = config.params["database"]
        min_conn = config.params.get("min_connections", 1)
        max_conn = config.params.get("max_connections", 5)

        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=min_conn,
                maxconn=max_conn,
                host=self._host,
                port=config.params.get("port", 5432),
                database=self._database,
                user=config.params["user"],
                password=config.params["password"],
            )
        except psycopg2.Error as e:
            logger.error("Failed to create PostgreSQL connection pool: %s", e)
            raise
        logger.info(
            "Initialized PostgreSQL connection pool: host=%s, database=%s, pool_size=%d-%d",
            self._host,
            self._database,
            min_conn,
            max_conn,
        )
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Database transaction failed: %s", e)
            raise
        finally:
            self._pool.putconn(conn)

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS complaints (
                        id TEXT PRIMARY KEY,
                        draft_id TEXT NOT NULL UNIQUE,
                        reg_number TEXT NOT NULL,
                        user_id TEXT,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL,
                        category TEXT,
                        main_category TEXT,
                        sub_category TEXT,
                        specific_issue TEXT,
                        city TEXT,
                        department TEXT,
                        priority TEXT,
                        status TEXT NOT NULL,
                        location TEXT,
                        latitude DOUBLE PRECISION,
                        longitude DOUBLE PRECISION,
                        location_source TEXT,
                        reporter JSONB,
                        attachments JSONB NOT NULL,
                        attachments_count INTEGER NOT NULL,
                        updates JSONB NOT NULL,
                        submitted_at TIMESTAMPTZ NOT NULL,
                        date_submitted DATE NOT NULL,
                        last_updated DATE NOT NULL
                    )
                    """
                )

    @retry(
        retry=retry_if_exception_type(psycopg2.OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def insert(self, record: ComplaintRecord) -> Dict[str, object]:
        data = record.to_dict()
        today: date = record.submitted_at.date()
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(
                    """
                    INSERT INTO complaints (
                        id, draft_id, reg_number, user_id, title, description,
                        category, main_category, sub_category, specific_issue,
                        city, department, priority, status, location, latitude,
                        longitude, location_source, reporter, attachments,
                        attachments_count, updates, submitted_at, date_submitted,
                        last_updated
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (draft_id)
                    DO UPDATE SET draft_id = EXCLUDED.draft_id
                    RETURNING *
                    """,
                    (
                        data["id"],
                        data["draft_id"],
                        registration_number(record),
                        data["user_id"],
                        data["title"],
                        data["description"],
                        data["category"],
                        data["main_category"],
                        data["sub_category"],
                        data["specific_issue"],
                        data["city"],
                        data["department"],
                        data["priority"],
                        data["status"],
                        data["location"],
                        data["latitude"],
                        data["longitude"],
                        data["location_source"],
                        psycopg2.extras.Json(data["reporter"]),
                        psycopg2.extras.Json(data["attachments"]),
                        data["attachments_count"],
                        psycopg2.extras.Json(_initial_updates(record)),
                        record.submitted_at,
                        today,
                        today,
                    ),
                )
                row = dict(cursor.fetchone())
        logger.info("Stored complaint %s (draft %s) in PostgreSQL", row["id"], record.draft_id)
        return row

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()
            logger.info("Closed PostgreSQL connection pool")


def build_object_store(config: StorageTargetConfig) -> ObjectStore:
    store_type = config.type
    if store_type == "local_fs":
        return LocalFilesystemObjectStore(config)
    elif store_type == "s3":
        return S3ObjectStore(config)
    elif store_type == "supabase":
        return SupabaseObjectStore(config)
    elif store_type == "memory":
        return InMemoryObjectStore(config)
    raise ValueError(f"Unsupported object store type: {store_type}")


def build_complaint_store(config: StorageTargetConfig) -> ComplaintStore:
    store_type = config.type
    if store_type == "sqlite":
        return SqliteComplaintStore(config)
    elif store_type == "postgres":
        return PostgresComplaintStore(config)
    elif store_type == "memory":
        return InMemoryComplaintStore(config)
    raise ValueError(f"Unsupported complaint store type: {store_type}")
