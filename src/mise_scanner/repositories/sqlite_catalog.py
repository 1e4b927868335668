from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import Integer, String, Text, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from mise_scanner.core.metrics import CACHE_HITS, CACHE_MISSES
from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.domain.models import BARCODE_KEY, CacheEntry, ProductRecord
from mise_scanner.domain.ports import AbstractResolutionCache


class Base(DeclarativeBase):
    pass


class ProductORM(Base):
    """Lokaler Katalog (Import aus CSV/XLSX)."""

    __tablename__ = "produtos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    codigo_barras: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    produto: Mapped[str | None] = mapped_column(Text, index=True)
    grupo: Mapped[str | None] = mapped_column(Text)
    subgrupo: Mapped[str | None] = mapped_column(Text)
    marca: Mapped[str | None] = mapped_column(Text, index=True)
    categoria: Mapped[str | None] = mapped_column(Text)
    ncm: Mapped[str | None] = mapped_column(Text)
    unidade_medida: Mapped[str | None] = mapped_column(Text)
    quantidade: Mapped[str | None] = mapped_column(Text)
    peso_liquido: Mapped[str | None] = mapped_column(Text)
    peso_bruto: Mapped[str | None] = mapped_column(Text)
    preco_medio: Mapped[str | None] = mapped_column(Text)
    fonte: Mapped[str | None] = mapped_column(Text, default="local")


class OnlineProductORM(Base):
    """Online aufgelöste Barcodes (Resolution Cache)."""

    __tablename__ = "produtos_online"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    codigo_barras: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    nome: Mapped[str | None] = mapped_column(Text)
    marca: Mapped[str | None] = mapped_column(Text)
    categoria: Mapped[str | None] = mapped_column(Text)
    fonte: Mapped[str] = mapped_column(Text, nullable=False)
    data_coleta: Mapped[str | None] = mapped_column(Text)


# ORM-Spalte -> Schlüssel im ProductRecord (identisch zu den CSV-Überschriften)
_RECORD_KEYS = {
    "codigo_barras": BARCODE_KEY,
    "produto": "produto",
    "grupo": "grupo",
    "subgrupo": "subgrupo",
    "marca": "marca",
    "categoria": "categoria",
    "ncm": "ncm",
    "unidade_medida": "unidade medida",
    "quantidade": "quantidade",
    "peso_liquido": "peso líquido",
    "peso_bruto": "peso bruto",
    "preco_medio": "preço médio",
    "fonte": "fonte",
}


def _to_record(row: ProductORM) -> ProductRecord:
    return {key: getattr(row, column) or "" for column, key in _RECORD_KEYS.items()}


def _to_entry(row: OnlineProductORM) -> CacheEntry:
    created_at = datetime.now(UTC)
    if row.data_coleta:
        try:
            created_at = datetime.fromisoformat(row.data_coleta)
        except ValueError:
            pass
    return CacheEntry(
        barcode=row.codigo_barras,
        name=row.nome or "",
        source=row.fonte,
        brand=row.marca or "",
        category=row.categoria or "",
        created_at=created_at,
    )


class SQLiteCatalogRepository(AbstractResolutionCache):
    """
    Relationaler Speicher mit den Tabellen `produtos` (lokaler Katalog)
    und `produtos_online` (Resolution Cache).
    """

    def __init__(self, database_url: str) -> None:
        self.engine = create_async_engine(database_url)
        self.async_session_maker = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def for_path(cls, path: Path) -> SQLiteCatalogRepository:
        return cls(f"sqlite+aiosqlite:///{path}")

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Tabelle produtos
    # ------------------------------------------------------------------

    async def load_products(self) -> list[ProductRecord]:
        async with self.async_session_maker() as session:
            result = await session.execute(select(ProductORM))
            return [_to_record(row) for row in result.scalars()]

    async def count_products(self) -> int:
        async with self.async_session_maker() as session:
            result = await session.execute(select(func.count()).select_from(ProductORM))
            return int(result.scalar_one())

    async def import_products(self, records: list[ProductRecord]) -> int:
        """Inserts or replaces catalog rows keyed by barcode. Returns the number stored."""
        stored = 0
        async with self.async_session_maker() as session, session.begin():
            for record in records:
                code = normalize_code(record.get(BARCODE_KEY))
                if not code:
                    continue
                existing = await session.execute(
                    select(ProductORM).where(ProductORM.codigo_barras == code)
                )
                row = existing.scalar_one_or_none() or ProductORM(codigo_barras=code)
                for column, key in _RECORD_KEYS.items():
                    if column == "codigo_barras":
                        continue
                    setattr(row, column, record.get(key) or "")
                if not row.fonte:
                    row.fonte = "local"
                session.add(row)
                stored += 1
        return stored

    # ------------------------------------------------------------------
    # Tabelle produtos_online (AbstractResolutionCache)
    # ------------------------------------------------------------------

    async def find(self, barcode: str) -> CacheEntry | None:
        async with self.async_session_maker() as session:
            result = await session.execute(
                select(OnlineProductORM).where(OnlineProductORM.codigo_barras == barcode)
            )
            row = result.scalar_one_or_none()
            if row is None:
                CACHE_MISSES.inc()
                return None
            CACHE_HITS.inc()
            return _to_entry(row)

    async def all(self) -> list[CacheEntry]:
        async with self.async_session_maker() as session:
            result = await session.execute(select(OnlineProductORM).order_by(OnlineProductORM.id))
            return [_to_entry(row) for row in result.scalars()]

    async def insert_if_absent(self, entry: CacheEntry) -> bool:
        async with self.async_session_maker() as session, session.begin():
            result = await session.execute(
                select(OnlineProductORM.id).where(OnlineProductORM.codigo_barras == entry.barcode)
            )
            if result.scalar_one_or_none() is not None:
                return False
            session.add(
                OnlineProductORM(
                    codigo_barras=entry.barcode,
                    nome=entry.name,
                    marca=entry.brand,
                    categoria=entry.category,
                    fonte=entry.source,
                    data_coleta=entry.created_at.isoformat(),
                )
            )
        return True

    async def count(self) -> int:
        async with self.async_session_maker() as session:
            result = await session.execute(select(func.count()).select_from(OnlineProductORM))
            return int(result.scalar_one())
