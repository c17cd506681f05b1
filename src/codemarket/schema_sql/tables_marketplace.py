"""CREATE TABLE statements for the catalog mirror, orders, and role upgrades."""

PROJECTS = """
CREATE TABLE projects (
    project_id     UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    seller_id      UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    title          VARCHAR(200) NOT NULL,
    price          INTEGER NOT NULL CONSTRAINT ck_project_price_positive CHECK (price > 0),
    status         VARCHAR(20) NOT NULL DEFAULT 'draft'
                   CONSTRAINT ck_project_status
                   CHECK (status IN ('draft','pending_review','approved','rejected','archived')),
    is_dockerized  BOOLEAN NOT NULL DEFAULT FALSE,
    download_count INTEGER NOT NULL DEFAULT 0,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ORDERS = """
CREATE TABLE orders (
    order_id        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    order_number    VARCHAR(32) NOT NULL UNIQUE,
    buyer_id        UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    seller_id       UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    project_id      UUID NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
    amount          INTEGER NOT NULL CONSTRAINT ck_order_amount_positive CHECK (amount > 0),
    platform_fee    INTEGER NOT NULL DEFAULT 0,
    seller_proceeds INTEGER NOT NULL DEFAULT 0,
    payment_method  VARCHAR(20) NOT NULL DEFAULT 'credits'
                    CONSTRAINT ck_order_payment_method CHECK (payment_method IN ('credits')),
    status          VARCHAR(20) NOT NULL DEFAULT 'pending'
                    CONSTRAINT ck_order_status
                    CHECK (status IN ('pending','completed','cancelled')),
    payment_transaction_id VARCHAR(64),
    cancel_reason   TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at    TIMESTAMPTZ,
    cancelled_at    TIMESTAMPTZ,
    CONSTRAINT ck_order_split_non_negative
        CHECK (platform_fee >= 0 AND seller_proceeds >= 0),
    CONSTRAINT ck_order_fee_split
        CHECK (status <> 'completed' OR amount = platform_fee + seller_proceeds),
    CONSTRAINT ck_order_no_self_purchase CHECK (buyer_id <> seller_id)
);
"""

ORDER_DOWNLOADS = """
CREATE TABLE order_downloads (
    download_id   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    order_id      UUID NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
    user_id       UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    project_id    UUID NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
    file_name     VARCHAR(255) NOT NULL,
    downloaded_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ROLE_UPGRADE_REQUESTS = """
CREATE TABLE role_upgrade_requests (
    request_id    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id       UUID NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    from_role     VARCHAR(20) NOT NULL,
    to_role       VARCHAR(20) NOT NULL,
    status        VARCHAR(20) NOT NULL DEFAULT 'pending'
                  CONSTRAINT ck_role_upgrade_status
                  CHECK (status IN ('pending','approved','rejected')),
    reason        TEXT NOT NULL,
    experience    TEXT,
    portfolio_url VARCHAR(255),
    github_url    VARCHAR(255),
    admin_comment TEXT,
    reviewed_by   UUID REFERENCES users(user_id),
    reviewed_at   TIMESTAMPTZ,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

ALL = [PROJECTS, ORDERS, ORDER_DOWNLOADS, ROLE_UPGRADE_REQUESTS]
