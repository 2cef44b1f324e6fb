import sys
from sqlmodel import Session

from disclosure_api.db import engine
from disclosure_api.ledger import view_count_drift

# The ledger is written fire-and-forget, so a grant may legitimately show more
# views than the ledger recorded. This only reports; it never rewrites counts.

disclosure_id = int(sys.argv[1]) if len(sys.argv) > 1 else None

with Session(engine) as session:
    report = view_count_drift(session, disclosure_id)

drifted = [row for row in report if row["drift"]]
for row in drifted:
    print(
        f"share {row['share_id']} (disclosure {row['disclosure_id']}): "
        f"view_count={row['view_count']} ledger={row['ledger_views']} drift={row['drift']:+d}"
    )
print(f"{len(report)} shares checked, {len(drifted)} drifted")
sys.exit(1 if drifted else 0)
