from sqlalchemy.orm import Session

from stockledger.models import User
from stockledger.permissions import APPROVER_ROLES


def approver_user_ids(db: Session) -> list[int]:
    rows = (
        db.query(User.id)
        .filter(User.is_active.is_(True), User.role.in_(APPROVER_ROLES))
        .order_by(User.id.asc())
        .all()
    )
    return [user_id for (user_id,) in rows]
