from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Station(db.Model):
    """
    Physical work station on the shop floor.

    WHY: A barcode scan at a station tells us which production stage an item
    has entered. stage holds the production status the station moves items into.
    """
    __tablename__ = "stations"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    stage = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "stage": self.stage,
            "description": self.description,
            "isActive": self.is_active,
        }


class ItemProcessingLog(db.Model):
    """
    One (order item, station, worker) work interval.

    OPEN vs CLOSED:
    - OPEN: end_time IS NULL, work in progress
    - CLOSED: end_time and duration_in_seconds set

    INVARIANTS:
    - At most one OPEN log per order item. The partial unique index below is the
      backstop for concurrent scans; the service checks first for a clean error.
    - duration_in_seconds is never stored below 1.
    """
    __tablename__ = "item_processing_logs"
    __table_args__ = (
        db.Index(
            "uq_item_processing_logs_open",
            "order_item_id",
            unique=True,
            sqlite_where=db.text("end_time IS NULL"),
            postgresql_where=db.text("end_time IS NULL"),
        ),
        db.Index("ix_item_processing_logs_user_open", "user_id", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_in_seconds = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    order_item = db.relationship("OrderItem", backref=db.backref("processing_logs", lazy=True))
    station = db.relationship("Station")
    user = db.relationship("User")

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderItemId": self.order_item_id,
            "stationId": self.station_id,
            "stationName": self.station.name if self.station else None,
            "userId": self.user_id,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "durationInSeconds": self.duration_in_seconds,
            "notes": self.notes,
        }
