from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


LOANER_STATUSES = ("Available", "Prestada", "Alquilada")
LOAN_TYPES = ("Loan", "Rental")

# loan_type -> status the bike moves to
LOAN_TYPE_STATUS = {
    "Loan": "Prestada",
    "Rental": "Alquilada",
}


class LoanerBike(db.Model):
    """
    A bicycle held for temporary loan or rental. Never sold.

    INVARIANT: loan_details is non-null iff status != "Available".
    Only loaner_service moves status, always together with loan_details.
    """
    __tablename__ = "loaner_bikes"
    __table_args__ = (
        db.Index("ix_loaner_bikes_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ref_number = db.Column("refNumber", db.String(16), nullable=False, unique=True)
    serial_number = db.Column("serialNumber", db.String(64), nullable=True)

    brand = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(120), nullable=False)
    size = db.Column(db.String(16), nullable=False)

    observations = db.Column(db.Text, nullable=False, default="")
    image_url = db.Column("imageUrl", db.String(512), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="Available")
    entry_date = db.Column("entryDate", db.DateTime, nullable=False)

    # {"loan_type", "loanee_name", "loanee_phone", "loanee_dni", "start_date",
    #  "rental_duration" (Rental) | "loan_reason" (Loan)}
    loan_details = db.Column("loanDetails", db.JSON, nullable=True)

    version_id = db.Column("versionId", db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LoanerBike id={self.id} ref={self.ref_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ref_number": self.ref_number,
            "serial_number": self.serial_number,
            "brand": self.brand,
            "model": self.model,
            "size": self.size,
            "observations": self.observations,
            "image_url": self.image_url,
            "status": self.status,
            "entry_date": to_utc_z(self.entry_date),
            "loan_details": self.loan_details,
            "version_id": self.version_id,
        }
