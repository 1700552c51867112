from app.models.base import Base  # noqa: F401

from app.models.delivery import DeliveryRecord  # noqa: F401
