import os

from completion.completion_store import DATABASE, CompletionStore

DB = os.environ.get("COMPLETION_DB", DATABASE)

store = CompletionStore(DB)

# Tables, indexes and pragmas (WAL, busy timeout) come from the store
store.create_schema()

tables = [row[0] for row in store.conn.execute(
    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")]
store.close()

print(f"Database initialized ✅ {DB}: {', '.join(tables)}")
