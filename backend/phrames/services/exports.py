"""
CSV Exports — Fixed column lists for payments and campaigns.

Columns are declared here, never derived from whatever attributes a row has,
so the output shape is stable when the schema drifts.
"""
from datetime import datetime
from typing import Any, Callable, Iterable, List, Sequence, Tuple

from sqlalchemy.orm import Session

from phrames.models.campaign import Campaign
from phrames.models.payment import PaymentRecord
from phrames.utils.timeutil import isoformat

Column = Tuple[str, Callable[[Any], Any]]

PAYMENT_COLUMNS: List[Column] = [
    ("id", lambda p: p.id),
    ("orderId", lambda p: p.order_id),
    ("userId", lambda p: p.payer_user_id),
    ("campaignId", lambda p: p.campaign_id),
    ("amount", lambda p: p.amount),
    ("currency", lambda p: p.currency),
    ("planType", lambda p: p.plan_type),
    ("status", lambda p: p.status),
    ("createdAt", lambda p: p.created_at),
    ("completedAt", lambda p: p.completed_at),
]

CAMPAIGN_COLUMNS: List[Column] = [
    ("id", lambda c: c.id),
    ("campaignName", lambda c: c.campaign_name),
    ("slug", lambda c: c.slug),
    ("createdBy", lambda c: c.owner_user_id),
    ("isActive", lambda c: c.is_active),
    ("isFreeCampaign", lambda c: c.is_free_campaign),
    ("planType", lambda c: c.plan_type),
    ("amountPaid", lambda c: c.amount_paid),
    ("createdAt", lambda c: c.created_at),
    ("expiresAt", lambda c: c.expires_at),
]


def format_field(value: Any) -> str:
    """Render one cell; quoted only when it contains a comma."""
    if value is None:
        return ""
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, datetime):
        text = isoformat(value)
    else:
        text = str(value)
    if "," in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def to_csv(rows: Iterable[Any], columns: Sequence[Column]) -> Tuple[str, int]:
    """Header line plus one line per row, newline-joined. Returns (csv, count)."""
    lines = [",".join(name for name, _ in columns)]
    for row in rows:
        lines.append(",".join(format_field(getter(row)) for _, getter in columns))
    return "\n".join(lines), len(lines) - 1


def export_payments(db: Session, page_size: int = 500) -> Tuple[str, int]:
    rows = db.query(PaymentRecord).order_by(PaymentRecord.created_at.asc(), PaymentRecord.id.asc()).yield_per(page_size)
    return to_csv(rows, PAYMENT_COLUMNS)


def export_campaigns(db: Session, page_size: int = 500) -> Tuple[str, int]:
    rows = db.query(Campaign).order_by(Campaign.created_at.asc(), Campaign.id.asc()).yield_per(page_size)
    return to_csv(rows, CAMPAIGN_COLUMNS)
