"""CREATE TABLE statements for users, per-user stats, and daily progress."""

USERS = """
CREATE TABLE users (
    user_id         UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email           VARCHAR(320) NOT NULL UNIQUE,
    username        VARCHAR(20) UNIQUE,
    password_hash   VARCHAR(255) NOT NULL,
    is_premium      BOOLEAN NOT NULL DEFAULT FALSE,
    subscription_tier VARCHAR(20) NOT NULL DEFAULT 'FREE'
                    CONSTRAINT ck_users_subscription_tier
                    CHECK (subscription_tier IN ('FREE', 'PREMIUM')),
    riddles_per_day_limit INTEGER NOT NULL DEFAULT 5,
    riddles_today_count   INTEGER NOT NULL DEFAULT 0,
    riddles_today_date    DATE,
    total_riddles_solved  INTEGER NOT NULL DEFAULT 0,
    current_streak  INTEGER NOT NULL DEFAULT 0,
    longest_streak  INTEGER NOT NULL DEFAULT 0,
    last_solved_date DATE,
    reset_password_token   VARCHAR(64),
    reset_password_expires TIMESTAMPTZ,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

USER_STATS = """
CREATE TABLE user_stats (
    stats_id        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL UNIQUE REFERENCES users(user_id) ON DELETE CASCADE,
    total_riddles_solved INTEGER NOT NULL DEFAULT 0,
    total_attempts  INTEGER NOT NULL DEFAULT 0,
    total_hints_used INTEGER NOT NULL DEFAULT 0,
    total_time_spent INTEGER NOT NULL DEFAULT 0,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

DAILY_PROGRESS = """
CREATE TABLE daily_progress (
    progress_id     UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    date            DATE NOT NULL,
    riddles_solved  INTEGER NOT NULL DEFAULT 0,
    riddles_attempted INTEGER NOT NULL DEFAULT 0,
    CONSTRAINT uq_daily_progress_user_date UNIQUE (user_id, date)
);
"""

ALL = [
    USERS,
    USER_STATS,
    DAILY_PROGRESS,
]
