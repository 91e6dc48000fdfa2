from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func

from busline.db.base import Base


class DemandPrediction(Base):
    __tablename__ = "demand_predictions"

    id = Column(String(36), primary_key=True)
    route_id = Column(String(36), ForeignKey("routes.id"), nullable=False)
    date = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)
    predicted_demand = Column(Integer, nullable=False)
    actual_demand = Column(Integer, nullable=True)
    accuracy = Column(Numeric(5, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_demand_predictions_route_date", "route_id", "date"),
    )
