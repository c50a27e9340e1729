"""Tenant model - each municipality, EPCI or association using the platform."""
import enum
from sqlalchemy import (
    Column, BigInteger, String, DateTime, Integer, Text, ForeignKey, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from voxpopulous.database import Base, BigIntPK


class TenantType(enum.Enum):
    """Kind of structure a tenant represents."""
    MAIRIE = 'MAIRIE'
    EPCI = 'EPCI'
    ASSOCIATION = 'ASSOCIATION'


class BillingStatus(enum.Enum):
    """Billing state pushed by the payment pipeline."""
    TRIAL = 'TRIAL'
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'
    CANCELLED = 'CANCELLED'


class LifecycleStatus(enum.Enum):
    """Data-governance state, independent from billing."""
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'
    ARCHIVED = 'ARCHIVED'


class Tenant(Base):
    """
    Tenant model - a node of the EPCI -> MAIRIE -> ASSOCIATION tree.

    A MAIRIE attached to an EPCI uses parent_epci_id; an ASSOCIATION attached
    to a MAIRIE or an EPCI uses parent_tenant_id. Tenants carrying a parent link
    are child tenants: their subscription is owned by the parent.
    """

    __tablename__ = 'tenant'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    name = Column(String(200), nullable=False)  # Display name
    tenant_type = Column(Enum(TenantType, name='tenant_type'), nullable=False, default=TenantType.MAIRIE)

    # Hierarchy
    parent_epci_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=True, index=True)
    parent_tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=True, index=True)

    # Subscription
    subscription_plan_id = Column(BigInteger, ForeignKey('subscription_plans.id'), nullable=True)
    billing_interval = Column(String(10), nullable=True)  # MONTHLY / YEARLY
    billing_status = Column(Enum(BillingStatus, name='billing_status'), nullable=False, default=BillingStatus.TRIAL)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)

    # Quantities granted from the back-office, on top of plan and addons
    purchased_admins = Column(Integer, nullable=False, default=0)
    purchased_associations = Column(Integer, nullable=False, default=0)
    purchased_communes = Column(Integer, nullable=False, default=0)

    # Bumped by the quota write path to take the row lock
    quota_revision = Column(Integer, nullable=False, default=0)

    # Lifecycle management
    lifecycle_status = Column(Enum(LifecycleStatus, name='tenant_lifecycle_status'), nullable=False,
                              default=LifecycleStatus.ACTIVE)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspended_reason = Column(Text, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    archived_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    plan = relationship('SubscriptionPlan', back_populates='tenants')
    parent_epci = relationship(
        'Tenant', remote_side='Tenant.id', foreign_keys='Tenant.parent_epci_id', back_populates='member_communes'
    )
    member_communes = relationship(
        'Tenant', foreign_keys='Tenant.parent_epci_id', back_populates='parent_epci'
    )
    parent_tenant = relationship(
        'Tenant', remote_side='Tenant.id', foreign_keys='Tenant.parent_tenant_id', back_populates='child_associations'
    )
    child_associations = relationship(
        'Tenant', foreign_keys='Tenant.parent_tenant_id', back_populates='parent_tenant'
    )
    users = relationship('TenantUser', back_populates='tenant')
    addons = relationship('TenantAddon', back_populates='tenant', cascade='all, delete-orphan')
    feature_override = relationship('TenantFeatureOverride', back_populates='tenant', uselist=False)

    __table_args__ = (
        CheckConstraint(
            'NOT (parent_epci_id IS NOT NULL AND parent_tenant_id IS NOT NULL)',
            name='check_single_parent_link'
        ),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', type={self.tenant_type.value if self.tenant_type else None})>"

    @property
    def parent_id(self):
        """Id of the owning tenant, whichever link carries it."""
        return self.parent_epci_id or self.parent_tenant_id

    @property
    def is_child(self):
        """Child tenants never administer their own billing."""
        return self.parent_id is not None

    @property
    def is_epci(self):
        return self.tenant_type == TenantType.EPCI

    @property
    def is_association(self):
        return self.tenant_type == TenantType.ASSOCIATION

    @property
    def is_suspended(self):
        return self.lifecycle_status == LifecycleStatus.SUSPENDED

    @property
    def is_archived(self):
        return self.lifecycle_status == LifecycleStatus.ARCHIVED

    def to_public_dict(self):
        """Public card served to the front-end."""
        return {
            'id': self.id,
            'slug': self.slug,
            'name': self.name,
            'tenantType': self.tenant_type.value,
            'parentEpciId': self.parent_epci_id,
            'parentTenantId': self.parent_tenant_id,
            'isChild': self.is_child,
            'lifecycleStatus': self.lifecycle_status.value,
        }
