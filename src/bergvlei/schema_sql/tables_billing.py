"""CREATE TABLE statements for subscriptions, webhook replay guard, and leaderboards."""

SUBSCRIPTIONS = """
CREATE TABLE subscriptions (
    subscription_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    provider        VARCHAR(20) NOT NULL,
    stripe_customer_id     VARCHAR(255),
    stripe_subscription_id VARCHAR(255),
    product_id      VARCHAR(255),
    state           VARCHAR(20) NOT NULL DEFAULT 'FREE'
                    CONSTRAINT ck_subscriptions_state
                    CHECK (state IN (
                        'FREE','ACTIVE','CANCEL_PENDING','EXPIRED','BILLING_ISSUE'
                    )),
    status          VARCHAR(20) NOT NULL DEFAULT 'ACTIVE'
                    CONSTRAINT ck_subscriptions_status
                    CHECK (status IN ('ACTIVE','CANCELED','EXPIRED','TRIAL')),
    tier            VARCHAR(20) NOT NULL DEFAULT 'FREE',
    current_period_start TIMESTAMPTZ,
    current_period_end   TIMESTAMPTZ,
    cancel_at_period_end BOOLEAN NOT NULL DEFAULT FALSE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

PROCESSED_WEBHOOKS = """
CREATE TABLE processed_webhooks (
    event_id        VARCHAR(255) PRIMARY KEY,
    provider        VARCHAR(20) NOT NULL,
    processed_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

LEADERBOARDS = """
CREATE TABLE leaderboards (
    leaderboard_id  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    username        VARCHAR(320) NOT NULL,
    period          VARCHAR(10) NOT NULL
                    CONSTRAINT ck_leaderboards_period
                    CHECK (period IN ('daily','weekly','monthly','alltime')),
    score           INTEGER NOT NULL DEFAULT 0,
    riddles_solved  INTEGER NOT NULL DEFAULT 0,
    rank            INTEGER NOT NULL,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT uq_leaderboard_user_period UNIQUE (user_id, period)
);
"""

ALL = [
    SUBSCRIPTIONS,
    PROCESSED_WEBHOOKS,
    LEADERBOARDS,
]
