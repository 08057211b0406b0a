"""CREATE TABLE statements for riddles, attempts, and saved riddles."""

RIDDLES = """
CREATE TABLE riddles (
    riddle_id       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    question        TEXT NOT NULL,
    answer          VARCHAR(255) NOT NULL,
    difficulty      VARCHAR(10) NOT NULL
                    CONSTRAINT ck_riddles_difficulty
                    CHECK (difficulty IN ('EASY', 'MEDIUM', 'HARD', 'EXPERT')),
    category        VARCHAR(50),
    hints           JSONB NOT NULL DEFAULT '[]'::jsonb,
    times_attempted INTEGER NOT NULL DEFAULT 0,
    times_solved    INTEGER NOT NULL DEFAULT 0,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE,
    ai_generated    BOOLEAN NOT NULL DEFAULT FALSE,
    created_by      UUID REFERENCES users(user_id) ON DELETE SET NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

RIDDLE_ATTEMPTS = """
CREATE TABLE riddle_attempts (
    attempt_id      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    riddle_id       UUID NOT NULL REFERENCES riddles(riddle_id) ON DELETE CASCADE,
    solved          BOOLEAN NOT NULL DEFAULT FALSE,
    attempts        INTEGER NOT NULL DEFAULT 0,
    hints_used      INTEGER NOT NULL DEFAULT 0,
    time_spent      INTEGER,
    started_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at    TIMESTAMPTZ
);
"""

SAVED_RIDDLES = """
CREATE TABLE saved_riddles (
    saved_id        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    riddle_id       UUID NOT NULL REFERENCES riddles(riddle_id) ON DELETE CASCADE,
    saved_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT uq_saved_riddle_user UNIQUE (user_id, riddle_id)
);
"""

ALL = [
    RIDDLES,
    RIDDLE_ATTEMPTS,
    SAVED_RIDDLES,
]
