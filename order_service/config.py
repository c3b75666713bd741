"""
Order Service — 設定

環境変数から読み込む。REDIS_URL が未設定ならイベント発行は行わない。
"""

import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./orders.db")
REDIS_URL = os.environ.get("REDIS_URL")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
DB_ECHO = os.environ.get("DB_ECHO", "false").lower() in ("1", "true", "yes")

# 状態更新・削除の楽観ロックが競合した場合の再試行回数
ORDER_MAX_RETRIES = int(os.environ.get("ORDER_MAX_RETRIES", "3"))
ORDER_PAGE_SIZE = int(os.environ.get("ORDER_PAGE_SIZE", "10"))

ORDER_EVENTS_CHANNEL = "order_events"
