"""
Local mirror of identity-provider role membership.

The workflow engine does not administer users or roles; this table is kept
in sync by the identity integration and read by DirectoryRoleMembership.
"""

from datetime import datetime, timezone

from docflow.models import db


class RoleAssignment(db.Model):
    __tablename__ = "role_assignments"
    __table_args__ = (
        db.UniqueConstraint("principal_id", "role", name="uq_role_assignment"),
    )

    id = db.Column(db.Integer, primary_key=True)
    principal_id = db.Column(db.String(150), nullable=False, index=True)
    role = db.Column(db.String(30), nullable=False, index=True, comment="docflow.core.roles.Role value")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<RoleAssignment {self.principal_id}:{self.role}>"
