"""
Addon catalog models: Addon, AddonTier, PlanAddonAccess and TenantAddon.

An addon is a purchasable capacity dimension (extra admins, associations,
member communes). Tiers price quantity brackets; plan access states whether a
plan may buy the addon at all.
"""
import enum
from sqlalchemy import (
    Column, BigInteger, String, Integer, Numeric, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from voxpopulous.database import Base, BigIntPK


class AddonCode(enum.Enum):
    """Known addon codes."""
    ADMIN = 'ADMIN'
    ASSOCIATIONS = 'ASSOCIATIONS'
    MAIRIES = 'MAIRIES'


class Addon(Base):
    """Purchasable capacity dimension. Default prices are per unit, in euros."""
    __tablename__ = 'addons'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text)
    default_monthly_price = Column(Numeric(10, 2), nullable=False, default=0)
    default_yearly_price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tiers = relationship(
        'AddonTier', back_populates='addon', cascade='all, delete-orphan',
        order_by='AddonTier.min_quantity'
    )

    def __repr__(self):
        return f'<Addon code={self.code}>'


class AddonTier(Base):
    """
    Priced quantity bracket of an addon.

    max_quantity NULL means the bracket is open-ended.
    """
    __tablename__ = 'addon_tiers'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    addon_id = Column(BigInteger, ForeignKey('addons.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(200), nullable=False)
    min_quantity = Column(Integer, nullable=False)
    max_quantity = Column(Integer, nullable=True)
    monthly_price = Column(Numeric(10, 2), nullable=False)
    yearly_price = Column(Numeric(10, 2), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    addon = relationship('Addon', back_populates='tiers')

    def __repr__(self):
        return f'<AddonTier addon_id={self.addon_id} [{self.min_quantity}, {self.max_quantity}]>'

    def contains(self, quantity):
        """Check if quantity falls inside [min_quantity, max_quantity]."""
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity


class PlanAddonAccess(Base):
    """
    Per-plan addon availability.

    quantity is the base quantity the plan includes; monthly_price and
    yearly_price override the addon default when set.
    """
    __tablename__ = 'plan_addon_access'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    plan_id = Column(BigInteger, ForeignKey('subscription_plans.id', ondelete='CASCADE'), nullable=False)
    addon_id = Column(BigInteger, ForeignKey('addons.id', ondelete='CASCADE'), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    quantity = Column(Integer, nullable=False, default=0)
    monthly_price = Column(Numeric(10, 2), nullable=True)
    yearly_price = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plan = relationship('SubscriptionPlan', back_populates='addon_access')
    addon = relationship('Addon', lazy='joined')

    __table_args__ = (
        UniqueConstraint('plan_id', 'addon_id', name='uq_plan_addon'),
    )

    def __repr__(self):
        return f'<PlanAddonAccess plan_id={self.plan_id} addon_id={self.addon_id} enabled={self.is_enabled}>'


class TenantAddon(Base):
    """Quantity of an addon purchased by a billing-owner tenant."""
    __tablename__ = 'tenant_addons'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False, index=True)
    addon_id = Column(BigInteger, ForeignKey('addons.id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    tenant = relationship('Tenant', back_populates='addons')
    addon = relationship('Addon', lazy='joined')

    __table_args__ = (
        UniqueConstraint('tenant_id', 'addon_id', name='uq_tenant_addon'),
    )

    def __repr__(self):
        return f'<TenantAddon tenant_id={self.tenant_id} addon_id={self.addon_id} qty={self.quantity}>'
