"""TenantFeatureOverride model - per-tenant exceptions to the plan."""
from sqlalchemy import Column, BigInteger, Boolean, Integer, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from voxpopulous.database import Base, BigIntPK


class TenantFeatureOverride(Base):
    """
    Overrides set by the platform operator for one tenant.

    Boolean columns are tri-state: NULL follows the plan, True grants the
    feature, False withdraws it.
    """
    __tablename__ = 'tenant_feature_overrides'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False, unique=True)
    has_ideas = Column(Boolean, nullable=True)
    has_incidents = Column(Boolean, nullable=True)
    has_meetings = Column(Boolean, nullable=True)
    max_admins = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    tenant = relationship('Tenant', back_populates='feature_override')

    def __repr__(self):
        return f'<TenantFeatureOverride tenant_id={self.tenant_id}>'
