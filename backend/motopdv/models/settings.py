from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class SystemSettings(db.Model):
    """
    Workshop configuration singleton (always id=1).

    Written once by the setup flow, then edited by the manager. The manager
    PIN is kept as a salted bcrypt hash and never serialized.
    """
    __tablename__ = "system_settings"

    id = db.Column(db.Integer, primary_key=True)

    # Workshop identity
    workshop_name = db.Column(db.String(255), nullable=False)
    cnpj = db.Column(db.String(32), nullable=False)
    phone_whatsapp = db.Column(db.String(32), nullable=False)
    logo_url = db.Column(db.Text, nullable=True)

    # Address
    address_street = db.Column(db.String(255), nullable=False)
    address_number = db.Column(db.String(32), nullable=False, default="")
    address_neighborhood = db.Column(db.String(128), nullable=False, default="")
    address_city = db.Column(db.String(128), nullable=False)
    address_state = db.Column(db.String(2), nullable=False, default="")
    address_zip = db.Column(db.String(16), nullable=False)

    # Manager identity
    manager_name = db.Column(db.String(255), nullable=False)
    manager_photo = db.Column(db.Text, nullable=True)
    pin_hash = db.Column(db.String(255), nullable=False)

    # Percent of the subtotal; see Config.USE_CONFIGURED_DISCOUNT_LIMIT
    max_discount_sem_pin = db.Column(db.Float, nullable=False, default=5.0)

    # {"2": 3.2, "3": 4.8, ...} percent per installment count; None -> built-in table
    installment_rates = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "workshop_name": self.workshop_name,
            "cnpj": self.cnpj,
            "phone_whatsapp": self.phone_whatsapp,
            "logo_url": self.logo_url,
            "address_street": self.address_street,
            "address_number": self.address_number,
            "address_neighborhood": self.address_neighborhood,
            "address_city": self.address_city,
            "address_state": self.address_state,
            "address_zip": self.address_zip,
            "manager_name": self.manager_name,
            "manager_photo": self.manager_photo,
            "max_discount_sem_pin": self.max_discount_sem_pin,
            "installment_rates": self.installment_rates,
            "updated_at": to_utc_z(self.updated_at),
        }
