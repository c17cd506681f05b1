"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # credit_transactions
    "CREATE INDEX idx_credit_txn_user_created "
    "ON credit_transactions(user_id, created_at);",
    "CREATE INDEX idx_credit_txn_reference ON credit_transactions(reference_id, txn_type);",
    # projects
    "CREATE INDEX idx_projects_seller ON projects(seller_id, status);",
    # orders
    "CREATE INDEX idx_orders_buyer_project ON orders(buyer_id, project_id, status);",
    "CREATE INDEX idx_orders_seller ON orders(seller_id, created_at);",
    # order_downloads
    "CREATE INDEX idx_downloads_order ON order_downloads(order_id, downloaded_at DESC);",
    # role_upgrade_requests: one open request per (user, target role)
    "CREATE UNIQUE INDEX uq_role_upgrade_one_pending "
    "ON role_upgrade_requests(user_id, to_role) WHERE status = 'pending';",
    "CREATE INDEX idx_role_upgrade_status ON role_upgrade_requests(status, created_at DESC);",
]
