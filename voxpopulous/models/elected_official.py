"""ElectedOfficial model and its admin menu permissions."""
import enum
from sqlalchemy import (
    Column, BigInteger, String, Boolean, Integer, Text, DateTime, ForeignKey, Enum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash
from voxpopulous.database import Base, BigIntPK


class AdminMenuCode(enum.Enum):
    """Closed set of admin menu entries a permission can target."""
    DASHBOARD = 'DASHBOARD'
    IDEAS = 'IDEAS'
    INCIDENTS = 'INCIDENTS'
    EVENTS = 'EVENTS'
    ASSOCIATIONS = 'ASSOCIATIONS'
    ELUS = 'ELUS'
    DOMAINS = 'DOMAINS'
    PHOTOS = 'PHOTOS'
    ADMINS = 'ADMINS'
    SHARE = 'SHARE'
    SETTINGS = 'SETTINGS'
    BILLING = 'BILLING'


class ElectedOfficial(Base):
    """
    Elected official (or association board member) of a tenant.

    Officials with a password can sign in to the back-office. Unless
    has_full_access is set, they only reach the menus listed in
    menu_permissions.
    """
    __tablename__ = 'tenant_elected_officials'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    function = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    has_full_access = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    tenant = relationship('Tenant')
    menu_permissions = relationship(
        'ElectedOfficialMenuPermission', back_populates='elected_official', cascade='all, delete-orphan'
    )

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash. Officials without password cannot sign in."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def menu_codes(self):
        """Permitted menu codes, in enum order."""
        granted = {p.menu_code for p in self.menu_permissions}
        return [code for code in AdminMenuCode if code in granted]

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'function': self.function,
            'email': self.email,
            'isActive': self.is_active,
            'hasFullAccess': self.has_full_access,
            'menuPermissions': [code.value for code in self.menu_codes],
        }

    def __repr__(self):
        return f"<ElectedOfficial(id={self.id}, tenant_id={self.tenant_id})>"


class ElectedOfficialMenuPermission(Base):
    """One admin menu an elected official may open."""
    __tablename__ = 'elected_official_menu_permissions'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    elected_official_id = Column(
        BigInteger, ForeignKey('tenant_elected_officials.id', ondelete='CASCADE'), nullable=False
    )
    menu_code = Column(Enum(AdminMenuCode, name='admin_menu_code'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    elected_official = relationship('ElectedOfficial', back_populates='menu_permissions')

    __table_args__ = (
        UniqueConstraint('elected_official_id', 'menu_code', name='uq_official_menu'),
    )

    def __repr__(self):
        return f"<ElectedOfficialMenuPermission(official={self.elected_official_id}, code={self.menu_code})>"
