"""Store Rating - Request gateway: RBAC, middleware, error handling."""
