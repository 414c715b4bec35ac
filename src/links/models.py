from sqlalchemy import Table, Column, Integer, DateTime, MetaData, String, Text, ForeignKey

metadata = MetaData()

links = Table(
    "links",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("code", String(length=32), nullable=False, unique=True, index=True),
    Column("url", String(length=2048), nullable=False, unique=True),
    Column("title", Text, nullable=False, default=""),
    Column("base_url", String(length=2048), nullable=True),
    Column("owner_id", String(length=255), nullable=True),
    Column("visits", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
)

clicks = Table(
    "clicks",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("link_id", Integer, ForeignKey("links.id"), nullable=False, index=True),
    Column("created_at", DateTime, nullable=False),
)
