from .db import execute_script
import logging

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    -- Users table: identity records referenced by incidents
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        role VARCHAR(20) NOT NULL CHECK (role IN ('user', 'moderator', 'admin')) DEFAULT 'user',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    );

    -- Incidents table: reported safety incidents and their review state
    CREATE TABLE IF NOT EXISTS incidents (
        id TEXT PRIMARY KEY,
        type VARCHAR(30) NOT NULL CHECK (type IN (
            'road_hazard', 'theft', 'flooding', 'power_outage', 'fire', 'medical_emergency', 'other'
        )),
        description VARCHAR(1000) NOT NULL,
        location_lon DOUBLE PRECISION NOT NULL CHECK (location_lon BETWEEN -180 AND 180),
        location_lat DOUBLE PRECISION NOT NULL CHECK (location_lat BETWEEN -90 AND 90),
        location_address TEXT NOT NULL DEFAULT '',
        images TEXT[] NOT NULL DEFAULT '{}',
        status VARCHAR(20) NOT NULL CHECK (status IN ('reported', 'verified', 'rejected', 'resolved')) DEFAULT 'reported',
        reported_by TEXT NOT NULL REFERENCES users(id),
        verified_by TEXT REFERENCES users(id),
        verified_at TIMESTAMP WITH TIME ZONE,
        resolved_at TIMESTAMP WITH TIME ZONE,
        rejection_reason TEXT,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        CHECK (rejection_reason IS NULL OR status = 'rejected')
    );

    CREATE INDEX IF NOT EXISTS idx_incidents_status_type ON incidents (status, type);
    CREATE INDEX IF NOT EXISTS idx_incidents_location ON incidents (location_lat, location_lon);
    CREATE INDEX IF NOT EXISTS idx_incidents_reported_by ON incidents (reported_by);
    CREATE INDEX IF NOT EXISTS idx_incidents_created_at ON incidents (created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_incidents_updated_at ON incidents (updated_at DESC);
    CREATE INDEX IF NOT EXISTS idx_users_created_at ON users (created_at DESC);
"""


async def create_tables():
    """Create tables and indexes for the incident store"""
    await execute_script(SCHEMA_SQL)
    logger.info("Database tables and indexes created successfully.")
