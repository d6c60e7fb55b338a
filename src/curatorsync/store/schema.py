"""Local SQLite schema.

The schema has a single migration strategy: a database whose
``PRAGMA user_version`` differs from :data:`SCHEMA_VERSION` is discarded and
recreated.
"""

from __future__ import annotations

SCHEMA_VERSION = 7

REQUIRED_TABLES = frozenset(
    {
        "curators",
        "concepts",
        "restaurants",
        "restaurant_concepts",
        "restaurant_locations",
        "restaurant_photos",
        "settings",
    }
)

# Dependent tables are listed before their parents.
DEPENDENT_TABLES = ("restaurant_concepts", "restaurant_locations", "restaurant_photos")

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS curators (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    last_active TEXT,
    origin TEXT NOT NULL DEFAULT 'local' CHECK (origin IN ('local', 'remote')),
    server_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_curators_name ON curators (name COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_curators_server_id ON curators (server_id);

CREATE TABLE IF NOT EXISTS concepts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category TEXT NOT NULL,
    value TEXT NOT NULL,
    timestamp TEXT,
    UNIQUE (category, value)
);

CREATE TABLE IF NOT EXISTS restaurants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    curator_id INTEGER REFERENCES curators (id) ON DELETE SET NULL,
    timestamp TEXT,
    transcription TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT 'local' CHECK (source IN ('local', 'remote')),
    server_id TEXT,
    last_synced TEXT
);
CREATE INDEX IF NOT EXISTS idx_restaurants_curator ON restaurants (curator_id);
CREATE INDEX IF NOT EXISTS idx_restaurants_source ON restaurants (source);
CREATE INDEX IF NOT EXISTS idx_restaurants_server_id ON restaurants (server_id);

CREATE TABLE IF NOT EXISTS restaurant_concepts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id INTEGER NOT NULL REFERENCES restaurants (id),
    concept_id INTEGER NOT NULL REFERENCES concepts (id)
);
CREATE INDEX IF NOT EXISTS idx_restaurant_concepts_restaurant ON restaurant_concepts (restaurant_id);

CREATE TABLE IF NOT EXISTS restaurant_locations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id INTEGER NOT NULL UNIQUE REFERENCES restaurants (id),
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    address TEXT
);

CREATE TABLE IF NOT EXISTS restaurant_photos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id INTEGER NOT NULL REFERENCES restaurants (id),
    photo_data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_restaurant_photos_restaurant ON restaurant_photos (restaurant_id);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT
);

PRAGMA user_version = {SCHEMA_VERSION};
"""
