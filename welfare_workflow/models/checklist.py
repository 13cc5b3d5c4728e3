"""
Welfare checklist models.

Welfare approval is gated on every active checklist item having at least
one response for the case.
"""

from datetime import datetime, timezone

from welfare_workflow.models import db


class ChecklistCategory(db.Model):
    __tablename__ = "welfare_checklist_categories"

    id = db.Column(db.Integer, primary_key=True)
    category_name = db.Column(db.String(200), nullable=False)
    sort_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    items = db.relationship("ChecklistItem", back_populates="category", lazy="dynamic")


class ChecklistItem(db.Model):
    __tablename__ = "welfare_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("welfare_checklist_categories.id", ondelete="CASCADE"), nullable=False,
    )
    form_section = db.Column(db.String(200), nullable=False)
    checklist_detail = db.Column(db.Text)
    sort_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    category = db.relationship("ChecklistCategory", back_populates="items")


class ChecklistResponse(db.Model):
    __tablename__ = "welfare_checklist_responses"
    __table_args__ = (
        db.UniqueConstraint("case_id", "checklist_item_id", name="uq_checklist_response_case_item"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    checklist_item_id = db.Column(
        db.Integer, db.ForeignKey("welfare_checklist_items.id", ondelete="CASCADE"), nullable=False,
    )
    properly_filled = db.Column(db.String(1), comment="Y | N")
    comments = db.Column(db.Text)
    filled_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
