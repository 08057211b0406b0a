"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # users
    "CREATE INDEX idx_users_reset_token ON users(reset_password_token) "
    "WHERE reset_password_token IS NOT NULL;",
    # riddles
    "CREATE INDEX idx_riddles_serve ON riddles(difficulty, times_attempted) "
    "WHERE is_active = TRUE;",
    "CREATE INDEX idx_riddles_creator ON riddles(created_by) WHERE created_by IS NOT NULL;",
    # riddle_attempts
    "CREATE INDEX idx_attempts_open ON riddle_attempts(user_id, riddle_id, started_at DESC) "
    "WHERE solved = FALSE;",
    "CREATE INDEX idx_attempts_solved ON riddle_attempts(user_id, riddle_id) "
    "WHERE solved = TRUE;",
    # saved_riddles
    "CREATE INDEX idx_saved_user ON saved_riddles(user_id, saved_at DESC);",
    # subscriptions
    "CREATE INDEX idx_subscriptions_user ON subscriptions(user_id, created_at DESC);",
    "CREATE INDEX idx_subscriptions_stripe ON subscriptions(stripe_subscription_id) "
    "WHERE stripe_subscription_id IS NOT NULL;",
    # leaderboards
    "CREATE INDEX idx_leaderboards_period_rank ON leaderboards(period, rank);",
]
