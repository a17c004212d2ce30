from __future__ import annotations

import logging

from werkzeug.security import generate_password_hash

from eprocurement.infrastructure.repositories import ProfileRepository, SupplierRepository


logger = logging.getLogger("eprocurement.demo")

DEMO_PROFILES = (
    {"email": "creador@demo.cl", "full_name": "Carla Creadora", "role": "creator", "area": "Marketing"},
    {"email": "aprobador@demo.cl", "full_name": "Andres Aprobador", "role": "approver", "area": "Compras"},
    {"email": "admin@demo.cl", "full_name": "Ana Admin", "role": "admin", "area": "Compras"},
    {"email": "ventas@eventospro.cl", "full_name": "Pedro Eventos Pro", "role": "supplier", "area": None},
    {"email": "contacto@catering-sur.cl", "full_name": "Sofia Catering Sur", "role": "supplier", "area": None},
)

DEMO_SUPPLIERS = (
    {
        "name": "Eventos Pro SpA",
        "contact_name": "Pedro Eventos Pro",
        "contact_email": "ventas@eventospro.cl",
        "contract_fee_percentage": 10.0,
    },
    {
        "name": "Catering Sur Ltda",
        "contact_name": "Sofia Catering Sur",
        "contact_email": "contacto@catering-sur.cl",
        "contract_fee_percentage": 8.5,
    },
)


def seed_demo_data(db, password: str = "demo123") -> dict:
    """Idempotent: existing emails are left untouched."""
    profiles = ProfileRepository()
    suppliers = SupplierRepository()
    password_hash = generate_password_hash(password)
    profiles_created = 0
    suppliers_created = 0

    with db.transaction():
        for profile in DEMO_PROFILES:
            if profiles.get_by_email(db, profile["email"]):
                continue
            profiles.create(db, password_hash=password_hash, **profile)
            profiles_created += 1
        for supplier in DEMO_SUPPLIERS:
            if suppliers.get_active_by_contact_email(db, supplier["contact_email"]):
                continue
            suppliers.create(db, **supplier)
            suppliers_created += 1

    logger.info(
        "demo_data_seeded",
        extra={"profiles_created": profiles_created, "suppliers_created": suppliers_created},
    )
    return {"profiles_created": profiles_created, "suppliers_created": suppliers_created}
