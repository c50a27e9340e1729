"""TenantUser model - administrators of a tenant's back-office."""
import enum
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash
from voxpopulous.database import Base, BigIntPK


class UserRole(enum.Enum):
    """Back-office role of a tenant account."""
    ADMIN = 'ADMIN'
    MODERATOR = 'MODERATOR'


class TenantUser(Base):
    """TenantUser model - one back-office account, bound to exactly one tenant.

    Accounts of ASSOCIATION tenants authenticate as association admins.
    Deactivated accounts (active=False) no longer count against the admin quota.
    """

    __tablename__ = 'tenant_users'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.ADMIN.value)
    active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    tenant = relationship('Tenant', back_populates='users')

    def set_password(self, password):
        """Store the scrypt hash of password."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """True when password matches the stored hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'active': self.active,
        }

    def __repr__(self):
        return f"<TenantUser(id={self.id}, tenant_id={self.tenant_id}, email='{self.email}')>"
