"""
SubscriptionPlan, Feature and PlanFeatureAssignment models.

Plans are the catalog tenants subscribe to. Features are granted to a plan
through catalog assignments; the has_* flags on the plan are the legacy path,
only read when a plan has no assignment at all.
"""
from sqlalchemy import (
    Column, BigInteger, String, Integer, Boolean, Text, DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from voxpopulous.database import Base, BigIntPK


class SubscriptionPlan(Base):
    """
    Subscription plan definition.

    Prices are stored in cents. Quantities (max_admins, associations_included,
    communes_included) are what the plan grants before any addon purchase.

    Relationship: One-to-Many with PlanFeatureAssignment, PlanAddonAccess and Tenant
    """
    __tablename__ = 'subscription_plans'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Plan Information
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text)

    # Pricing
    monthly_price = Column(Integer, nullable=False, default=0)
    yearly_price = Column(Integer, nullable=False, default=0)

    # Legacy feature flags
    has_ideas = Column(Boolean, nullable=False, default=True)
    has_incidents = Column(Boolean, nullable=False, default=True)
    has_meetings = Column(Boolean, nullable=False, default=True)

    # Included quantities
    max_admins = Column(Integer, nullable=False, default=1)
    associations_included = Column(Integer, nullable=False, default=0)
    communes_included = Column(Integer, nullable=False, default=0)

    # Tenant types allowed to subscribe; empty means every type
    target_tenant_types = Column(JSON, nullable=True)

    # Status
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    feature_assignments = relationship(
        'PlanFeatureAssignment', back_populates='plan', cascade='all, delete-orphan'
    )
    addon_access = relationship('PlanAddonAccess', back_populates='plan', cascade='all, delete-orphan')
    tenants = relationship('Tenant', back_populates='plan')

    def __repr__(self):
        return f'<SubscriptionPlan id={self.id} code={self.code} active={self.is_active}>'

    @property
    def formatted_monthly_price(self):
        """Return formatted monthly price in euros."""
        return f"{self.monthly_price / 100:,.2f} €"

    def is_available_for(self, tenant_type):
        """
        Check if a tenant type may subscribe to this plan.

        Args:
            tenant_type: TenantType member

        Returns:
            bool: True when the plan targets the type or targets every type
        """
        if not self.target_tenant_types:
            return True
        return tenant_type.value in self.target_tenant_types


class Feature(Base):
    """Catalog feature, identified by its code (e.g. IDEA_BOX_CORE)."""
    __tablename__ = 'features'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    code = Column(String(100), nullable=False, unique=True)
    description = Column(Text)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f'<Feature code={self.code}>'


class PlanFeatureAssignment(Base):
    """Grants a catalog feature to a plan."""
    __tablename__ = 'plan_feature_assignments'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    plan_id = Column(BigInteger, ForeignKey('subscription_plans.id', ondelete='CASCADE'), nullable=False)
    feature_id = Column(BigInteger, ForeignKey('features.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plan = relationship('SubscriptionPlan', back_populates='feature_assignments')
    feature = relationship('Feature', lazy='joined')

    __table_args__ = (
        UniqueConstraint('plan_id', 'feature_id', name='uq_plan_feature'),
    )

    def __repr__(self):
        return f'<PlanFeatureAssignment plan_id={self.plan_id} feature_id={self.feature_id}>'
