"""Seed data INSERT statements."""

CREDIT_CONFIGS = """
INSERT INTO credit_configs (config_key, config_value, description, is_active)
VALUES
    ('register_bonus',       100, 'Credits granted on registration', TRUE),
    ('upload_bonus',          50, 'Credits granted when a project is approved', TRUE),
    ('docker_multiplier',      2, 'Upload bonus multiplier for dockerized projects', TRUE),
    ('review_bonus',          10, 'Credits granted for reviewing a project', TRUE),
    ('daily_signin_bonus',     5, 'Credits granted for the daily sign-in', TRUE),
    ('referral_bonus',       200, 'Credits granted for a successful referral', TRUE),
    ('min_purchase_amount',    1, 'Minimum project price in credits', TRUE),
    ('max_daily_earn',       500, 'Maximum reward credits per user per UTC day (0 = no cap)', TRUE),
    ('platform_fee_percent',   0, 'Percentage of each sale retained by the platform', TRUE);
"""

ALL = [CREDIT_CONFIGS]
