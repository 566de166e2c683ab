SCHEMA_VERSION = 3

# SQLite INTEGER is a signed 64-bit value.
SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Users: on-chain registered users mirrored off-chain
CREATE TABLE IF NOT EXISTS users (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT,
    wallet_address TEXT UNIQUE,
    referrer_id    TEXT,
    is_active      INTEGER DEFAULT 1,
    coin_balance   INTEGER NOT NULL DEFAULT 0,
    created_at     TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Daily login tracker (one row per wallet per UTC day)
CREATE TABLE IF NOT EXISTS logins (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    login_date     TEXT NOT NULL,
    created_at     TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(wallet_address, login_date)
);

-- Referral rewards: at most one per referred wallet
CREATE TABLE IF NOT EXISTS referral_rewards (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    referred_wallet TEXT UNIQUE,
    referrer_id     TEXT,
    reward_coins    INTEGER DEFAULT 5,
    created_at      TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Mining purchases: one row per on-chain MinerPurchased event
-- (tx_hash is NULL for admin-forced rows)
CREATE TABLE IF NOT EXISTS mining_purchases (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address   TEXT NOT NULL,
    tx_hash          TEXT UNIQUE,
    daily_coins      INTEGER NOT NULL CHECK (daily_coins >= 0),
    total_days       INTEGER NOT NULL DEFAULT 30,
    credited_days    INTEGER NOT NULL DEFAULT 0
                     CHECK (credited_days >= 0 AND credited_days <= total_days),
    start_date       TEXT NOT NULL,
    last_credit_date TEXT
);

-- Manual balance deltas (append-only)
CREATE TABLE IF NOT EXISTS admin_coin_audit (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    delta          INTEGER NOT NULL,
    reason         TEXT,
    admin          TEXT NOT NULL,
    created_at     TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Manual "mining coin" edits (append-only)
CREATE TABLE IF NOT EXISTS mining_adjustments (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    delta          INTEGER NOT NULL,
    reason         TEXT,
    admin          TEXT NOT NULL,
    created_at     TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_users_referrer_id ON users(referrer_id);
CREATE INDEX IF NOT EXISTS idx_logins_wallet ON logins(wallet_address);
CREATE INDEX IF NOT EXISTS idx_referral_rewards_referrer ON referral_rewards(referrer_id);
CREATE INDEX IF NOT EXISTS idx_mining_purchases_wallet ON mining_purchases(wallet_address);
CREATE INDEX IF NOT EXISTS idx_admin_coin_audit_wallet ON admin_coin_audit(wallet_address);
CREATE INDEX IF NOT EXISTS idx_mining_adjustments_wallet ON mining_adjustments(wallet_address);
"""

# Columns introduced after the first deployments. Added best-effort on
# every bootstrap; "duplicate column" failures are expected and ignored.
LEGACY_COLUMNS = [
    ("users", "coin_balance", "INTEGER NOT NULL DEFAULT 0"),
    ("users", "is_active", "INTEGER DEFAULT 1"),
    ("users", "created_at", "TEXT"),
    ("admin_coin_audit", "reason", "TEXT"),
    ("mining_purchases", "last_credit_date", "TEXT"),
]

# May fail on legacy data with duplicate ids; ignored like the columns above.
LEGACY_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_user_id ON users(user_id) "
    "WHERE user_id IS NOT NULL AND user_id != ''",
]
