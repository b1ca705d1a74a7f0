"""
SQLite database implementation.
Simple and direct - no abstraction layers.
"""

import json
import os
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import aiosqlite

from .models import (
    COUNTED_MAPPING_STATUSES,
    ConflictMode,
    Connection,
    ConnectionStatus,
    MappingStatus,
    MarkupRule,
    MarkupType,
    MetafieldConfig,
    OrderEventKind,
    PaymentTermsType,
    ProductMapping,
    Shop,
    SyncFields,
    TierLevel,
    VariantMapping,
    VariantOption,
    generate_uuid,
    utcnow,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _options_json(options: List[VariantOption]) -> str:
    return json.dumps([o.model_dump() for o in options])


def _options(raw: Optional[str]) -> List[VariantOption]:
    return [VariantOption(**o) for o in json.loads(raw or "[]")]


class SQLiteDatabase:
    """SQLite database for all operations."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    async def initialize(self) -> None:
        """Create database tables."""
        conn = await self._get_connection()

        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS shops (
                id TEXT PRIMARY KEY,
                domain TEXT NOT NULL UNIQUE,
                access_token TEXT NOT NULL,
                tier TEXT NOT NULL DEFAULT 'FREE',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS connections (
                id TEXT PRIMARY KEY,
                supplier_shop_id TEXT NOT NULL,
                retailer_shop_id TEXT NOT NULL,
                status TEXT NOT NULL,
                payment_terms TEXT NOT NULL,
                tier TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (supplier_shop_id) REFERENCES shops(id),
                FOREIGN KEY (retailer_shop_id) REFERENCES shops(id)
            );

            CREATE TABLE IF NOT EXISTS product_mappings (
                id TEXT PRIMARY KEY,
                connection_id TEXT NOT NULL,
                supplier_item_id TEXT NOT NULL,
                supplier_variant_id TEXT,
                retailer_item_id TEXT,
                retailer_variant_id TEXT,
                sync_fields TEXT NOT NULL,
                markup_type TEXT NOT NULL,
                markup_value TEXT NOT NULL,
                conflict_mode TEXT NOT NULL,
                status TEXT NOT NULL,
                original_supplier_sku TEXT,
                sku_drift_detected INTEGER NOT NULL DEFAULT 0,
                last_synced_at TEXT,
                last_error TEXT,
                last_error_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (connection_id) REFERENCES connections(id),
                UNIQUE(connection_id, supplier_item_id)
            );

            CREATE TABLE IF NOT EXISTS variant_mappings (
                id TEXT PRIMARY KEY,
                product_mapping_id TEXT NOT NULL,
                supplier_variant_id TEXT NOT NULL,
                retailer_variant_id TEXT,
                supplier_options TEXT NOT NULL,
                retailer_options TEXT NOT NULL,
                manually_mapped INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (product_mapping_id) REFERENCES product_mappings(id),
                UNIQUE(product_mapping_id, supplier_variant_id)
            );

            CREATE TABLE IF NOT EXISTS order_events (
                id TEXT PRIMARY KEY,
                shop_id TEXT NOT NULL,
                connection_id TEXT,
                kind TEXT NOT NULL,
                order_ref TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS metafield_configs (
                id TEXT PRIMARY KEY,
                connection_id TEXT NOT NULL,
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                sync_enabled INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (connection_id) REFERENCES connections(id),
                UNIQUE(connection_id, namespace, key)
            );

            CREATE INDEX IF NOT EXISTS idx_connections_supplier ON connections(supplier_shop_id);
            CREATE INDEX IF NOT EXISTS idx_mappings_connection ON product_mappings(connection_id, status);
            CREATE INDEX IF NOT EXISTS idx_mappings_retailer_variant ON product_mappings(retailer_variant_id);
            CREATE INDEX IF NOT EXISTS idx_variant_mappings_retailer ON variant_mappings(retailer_variant_id);
            CREATE INDEX IF NOT EXISTS idx_order_events_shop ON order_events(shop_id, kind, created_at);
        """)
        await conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ===== Helper Methods =====

    def _row_to_shop(self, row: aiosqlite.Row) -> Shop:
        return Shop(
            id=row["id"],
            domain=row["domain"],
            access_token=row["access_token"],
            tier=TierLevel(row["tier"]),
            created_at=_dt(row["created_at"]),
        )

    def _row_to_connection(self, row: aiosqlite.Row) -> Connection:
        return Connection(
            id=row["id"],
            supplier_shop_id=row["supplier_shop_id"],
            retailer_shop_id=row["retailer_shop_id"],
            status=ConnectionStatus(row["status"]),
            payment_terms=PaymentTermsType(row["payment_terms"]),
            tier=TierLevel(row["tier"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_mapping(self, row: aiosqlite.Row) -> ProductMapping:
        return ProductMapping(
            id=row["id"],
            connection_id=row["connection_id"],
            supplier_item_id=row["supplier_item_id"],
            supplier_variant_id=row["supplier_variant_id"],
            retailer_item_id=row["retailer_item_id"],
            retailer_variant_id=row["retailer_variant_id"],
            sync_fields=SyncFields(**json.loads(row["sync_fields"])),
            markup=MarkupRule(
                type=MarkupType(row["markup_type"]),
                value=Decimal(row["markup_value"]),
            ),
            conflict_mode=ConflictMode(row["conflict_mode"]),
            status=MappingStatus(row["status"]),
            original_supplier_sku=row["original_supplier_sku"],
            sku_drift_detected=bool(row["sku_drift_detected"]),
            last_synced_at=_dt(row["last_synced_at"]),
            last_error=row["last_error"],
            last_error_at=_dt(row["last_error_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_variant_mapping(self, row: aiosqlite.Row) -> VariantMapping:
        return VariantMapping(
            id=row["id"],
            product_mapping_id=row["product_mapping_id"],
            supplier_variant_id=row["supplier_variant_id"],
            retailer_variant_id=row["retailer_variant_id"],
            supplier_options=_options(row["supplier_options"]),
            retailer_options=_options(row["retailer_options"]),
            manually_mapped=bool(row["manually_mapped"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # ===== Shop Operations =====

    async def create_shop(self, shop: Shop) -> Shop:
        conn = await self._get_connection()
        await conn.execute(
            "INSERT INTO shops (id, domain, access_token, tier, created_at) VALUES (?, ?, ?, ?, ?)",
            (shop.id, shop.domain, shop.access_token, shop.tier.value, _iso(shop.created_at))
        )
        await conn.commit()
        return shop

    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM shops WHERE id = ?", (shop_id,))
        row = await cursor.fetchone()
        return self._row_to_shop(row) if row else None

    async def update_shop_tier(self, shop_id: str, tier: TierLevel) -> Optional[Shop]:
        conn = await self._get_connection()
        await conn.execute("UPDATE shops SET tier = ? WHERE id = ?", (tier.value, shop_id))
        await conn.commit()
        return await self.get_shop(shop_id)

    # ===== Connection Operations =====

    async def create_connection(self, connection: Connection) -> Connection:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO connections (id, supplier_shop_id, retailer_shop_id, status,
                                     payment_terms, tier, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                connection.id,
                connection.supplier_shop_id,
                connection.retailer_shop_id,
                connection.status.value,
                connection.payment_terms.value,
                connection.tier.value,
                _iso(connection.created_at),
                _iso(connection.updated_at),
            )
        )
        await conn.commit()
        return connection

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM connections WHERE id = ?", (connection_id,))
        row = await cursor.fetchone()
        return self._row_to_connection(row) if row else None

    async def get_connections(self, status: Optional[ConnectionStatus] = None) -> List[Connection]:
        conn = await self._get_connection()
        if status:
            cursor = await conn.execute(
                "SELECT * FROM connections WHERE status = ? ORDER BY created_at", (status.value,)
            )
        else:
            cursor = await conn.execute("SELECT * FROM connections ORDER BY created_at")
        rows = await cursor.fetchall()
        return [self._row_to_connection(row) for row in rows]

    async def update_connection_status(
        self, connection_id: str, status: ConnectionStatus
    ) -> Optional[Connection]:
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE connections SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, _iso(utcnow()), connection_id)
        )
        await conn.commit()
        return await self.get_connection(connection_id)

    async def count_connections(self, supplier_shop_id: str) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM connections WHERE supplier_shop_id = ? AND status != ?",
            (supplier_shop_id, ConnectionStatus.TERMINATED.value)
        )
        row = await cursor.fetchone()
        return row[0]

    # ===== Product Mapping Operations =====

    async def get_mapping(self, mapping_id: str) -> Optional[ProductMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM product_mappings WHERE id = ?", (mapping_id,))
        row = await cursor.fetchone()
        return self._row_to_mapping(row) if row else None

    async def get_mapping_for_item(
        self, connection_id: str, supplier_item_id: str
    ) -> Optional[ProductMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM product_mappings WHERE connection_id = ? AND supplier_item_id = ?",
            (connection_id, supplier_item_id)
        )
        row = await cursor.fetchone()
        return self._row_to_mapping(row) if row else None

    async def get_mapping_by_retailer_variant(
        self, connection_id: str, retailer_variant_id: str
    ) -> Optional[ProductMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM product_mappings WHERE connection_id = ? AND retailer_variant_id = ?",
            (connection_id, retailer_variant_id)
        )
        row = await cursor.fetchone()
        return self._row_to_mapping(row) if row else None

    async def get_mappings(
        self,
        connection_id: str,
        statuses: Optional[Iterable[MappingStatus]] = None,
    ) -> List[ProductMapping]:
        conn = await self._get_connection()

        query = "SELECT * FROM product_mappings WHERE connection_id = ?"
        params: list = [connection_id]

        if statuses:
            statuses = list(statuses)
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)

        query += " ORDER BY created_at"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_mapping(row) for row in rows]

    async def upsert_mapping(self, mapping: ProductMapping) -> ProductMapping:
        """
        Insert a mapping, or refresh the sync preferences of the existing one
        for the same (connection, supplier item).
        """
        conn = await self._get_connection()
        now = _iso(utcnow())
        await conn.execute(
            """
            INSERT INTO product_mappings (
                id, connection_id, supplier_item_id, supplier_variant_id,
                retailer_item_id, retailer_variant_id, sync_fields, markup_type,
                markup_value, conflict_mode, status, original_supplier_sku,
                sku_drift_detected, last_synced_at, last_error, last_error_at,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(connection_id, supplier_item_id) DO UPDATE SET
                sync_fields = excluded.sync_fields,
                markup_type = excluded.markup_type,
                markup_value = excluded.markup_value,
                conflict_mode = excluded.conflict_mode,
                updated_at = excluded.updated_at
            """,
            (
                mapping.id,
                mapping.connection_id,
                mapping.supplier_item_id,
                mapping.supplier_variant_id,
                mapping.retailer_item_id,
                mapping.retailer_variant_id,
                mapping.sync_fields.model_dump_json(),
                mapping.markup.type.value,
                str(mapping.markup.value),
                mapping.conflict_mode.value,
                mapping.status.value,
                mapping.original_supplier_sku,
                int(mapping.sku_drift_detected),
                _iso(mapping.last_synced_at),
                mapping.last_error,
                _iso(mapping.last_error_at),
                _iso(mapping.created_at),
                now,
            )
        )
        await conn.commit()
        return await self.get_mapping_for_item(mapping.connection_id, mapping.supplier_item_id)

    async def update_mapping(self, mapping_id: str, **kwargs) -> Optional[ProductMapping]:
        if not kwargs:
            return await self.get_mapping(mapping_id)

        updates = []
        values = []

        for key, value in kwargs.items():
            if key == "sync_fields":
                updates.append("sync_fields = ?")
                values.append(value.model_dump_json())
            elif key == "markup":
                updates.extend(["markup_type = ?", "markup_value = ?"])
                values.extend([value.type.value, str(value.value)])
            elif key in ("status", "conflict_mode"):
                updates.append(f"{key} = ?")
                values.append(value.value)
            elif key == "sku_drift_detected":
                updates.append(f"{key} = ?")
                values.append(int(value))
            elif isinstance(value, datetime):
                updates.append(f"{key} = ?")
                values.append(value.isoformat())
            else:
                updates.append(f"{key} = ?")
                values.append(value)

        updates.append("updated_at = ?")
        values.append(_iso(utcnow()))
        values.append(mapping_id)

        conn = await self._get_connection()
        await conn.execute(
            f"UPDATE product_mappings SET {', '.join(updates)} WHERE id = ?", values
        )
        await conn.commit()

        return await self.get_mapping(mapping_id)

    async def update_mappings_status(
        self,
        connection_id: str,
        from_statuses: Iterable[MappingStatus],
        to_status: MappingStatus,
    ) -> int:
        from_statuses = list(from_statuses)
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            UPDATE product_mappings SET status = ?, updated_at = ?
            WHERE connection_id = ? AND status IN ({', '.join('?' for _ in from_statuses)})
            """,
            [to_status.value, _iso(utcnow()), connection_id, *(s.value for s in from_statuses)]
        )
        await conn.commit()
        return cursor.rowcount

    async def count_mappings_by_status(self, connection_id: str) -> Dict[MappingStatus, int]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT status, COUNT(*) AS n FROM product_mappings WHERE connection_id = ? GROUP BY status",
            (connection_id,)
        )
        rows = await cursor.fetchall()
        counts = {status: 0 for status in MappingStatus}
        for row in rows:
            counts[MappingStatus(row["status"])] = row["n"]
        return counts

    async def count_shadow_mappings(self, connection_id: str) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT COUNT(*) FROM product_mappings
            WHERE connection_id = ? AND retailer_item_id IS NULL AND status NOT IN (?, ?)
            """,
            (connection_id, MappingStatus.REPLACED.value, MappingStatus.UNSUPPORTED.value)
        )
        row = await cursor.fetchone()
        return row[0]

    async def count_recent_mapping_errors(self, connection_id: str, since: datetime) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM product_mappings WHERE connection_id = ? AND last_error_at >= ?",
            (connection_id, since.isoformat())
        )
        row = await cursor.fetchone()
        return row[0]

    async def count_mapped_products(self, supplier_shop_id: str) -> int:
        """Mapped products across every live connection the shop supplies."""
        conn = await self._get_connection()
        statuses = [s.value for s in COUNTED_MAPPING_STATUSES]
        cursor = await conn.execute(
            f"""
            SELECT COUNT(*) FROM product_mappings m
            JOIN connections c ON c.id = m.connection_id
            WHERE c.supplier_shop_id = ? AND c.status != ?
              AND m.status IN ({', '.join('?' for _ in statuses)})
            """,
            [supplier_shop_id, ConnectionStatus.TERMINATED.value, *statuses]
        )
        row = await cursor.fetchone()
        return row[0]

    # ===== Variant Mapping Operations =====

    async def get_variant_mapping(
        self, product_mapping_id: str, supplier_variant_id: str
    ) -> Optional[VariantMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM variant_mappings WHERE product_mapping_id = ? AND supplier_variant_id = ?",
            (product_mapping_id, supplier_variant_id)
        )
        row = await cursor.fetchone()
        return self._row_to_variant_mapping(row) if row else None

    async def get_variant_mappings(self, product_mapping_id: str) -> List[VariantMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM variant_mappings WHERE product_mapping_id = ? ORDER BY created_at",
            (product_mapping_id,)
        )
        rows = await cursor.fetchall()
        return [self._row_to_variant_mapping(row) for row in rows]

    async def find_variant_mapping_by_retailer_variant(
        self, connection_id: str, retailer_variant_id: str
    ) -> Optional[VariantMapping]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT v.* FROM variant_mappings v
            JOIN product_mappings m ON m.id = v.product_mapping_id
            WHERE m.connection_id = ? AND v.retailer_variant_id = ?
            """,
            (connection_id, retailer_variant_id)
        )
        row = await cursor.fetchone()
        return self._row_to_variant_mapping(row) if row else None

    async def upsert_variant_mapping(self, mapping: VariantMapping) -> VariantMapping:
        conn = await self._get_connection()
        now = _iso(utcnow())
        await conn.execute(
            """
            INSERT INTO variant_mappings (
                id, product_mapping_id, supplier_variant_id, retailer_variant_id,
                supplier_options, retailer_options, manually_mapped, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_mapping_id, supplier_variant_id) DO UPDATE SET
                retailer_variant_id = excluded.retailer_variant_id,
                supplier_options = excluded.supplier_options,
                retailer_options = excluded.retailer_options,
                manually_mapped = excluded.manually_mapped,
                updated_at = excluded.updated_at
            """,
            (
                mapping.id,
                mapping.product_mapping_id,
                mapping.supplier_variant_id,
                mapping.retailer_variant_id,
                _options_json(mapping.supplier_options),
                _options_json(mapping.retailer_options),
                int(mapping.manually_mapped),
                _iso(mapping.created_at),
                now,
            )
        )
        await conn.commit()
        return await self.get_variant_mapping(mapping.product_mapping_id, mapping.supplier_variant_id)

    async def set_variant_manual_flag(
        self, product_mapping_id: str, supplier_variant_id: str, manually_mapped: bool
    ) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            UPDATE variant_mappings SET manually_mapped = ?, updated_at = ?
            WHERE product_mapping_id = ? AND supplier_variant_id = ?
            """,
            (int(manually_mapped), _iso(utcnow()), product_mapping_id, supplier_variant_id)
        )
        await conn.commit()
        return cursor.rowcount > 0

    # ===== Order Event Operations =====

    async def record_order_event(
        self,
        shop_id: str,
        kind: OrderEventKind,
        order_ref: str,
        connection_id: Optional[str] = None,
    ) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO order_events (id, shop_id, connection_id, kind, order_ref, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (generate_uuid(), shop_id, connection_id, kind.value, order_ref, _iso(utcnow()))
        )
        await conn.commit()

    async def count_order_events(self, shop_id: str, kind: OrderEventKind, since: datetime) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM order_events WHERE shop_id = ? AND kind = ? AND created_at >= ?",
            (shop_id, kind.value, since.isoformat())
        )
        row = await cursor.fetchone()
        return row[0]

    # ===== Metafield Config Operations =====

    async def add_metafield_config(self, config: MetafieldConfig) -> MetafieldConfig:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO metafield_configs (id, connection_id, namespace, key, sync_enabled)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(connection_id, namespace, key) DO UPDATE SET
                sync_enabled = excluded.sync_enabled
            """,
            (config.id, config.connection_id, config.namespace, config.key, int(config.sync_enabled))
        )
        await conn.commit()
        return config

    async def count_enabled_metafield_configs(self, supplier_shop_id: str) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT COUNT(*) FROM metafield_configs f
            JOIN connections c ON c.id = f.connection_id
            WHERE c.supplier_shop_id = ? AND f.sync_enabled = 1
            """,
            (supplier_shop_id,)
        )
        row = await cursor.fetchone()
        return row[0]
