# Overview: Service-layer operations for workshop settings; setup, updates and the manager PIN.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import SystemSettings
from ..validation import ModelValidationPolicy, ValidationError, ConflictError, validate_payload
from . import pin_service
from .pricing import (
    DEFAULT_INSTALLMENT_RATES,
    DISCOUNT_AUTH_THRESHOLD_PERCENT,
    MAX_INSTALLMENTS,
    MIN_INSTALLMENTS,
)

logger = logging.getLogger(__name__)

SETTINGS_ID = 1

SETUP_POLICY = ModelValidationPolicy(
    writable_fields={
        "workshop_name", "cnpj", "phone_whatsapp", "logo_url",
        "address_street", "address_number", "address_neighborhood",
        "address_city", "address_state", "address_zip",
        "manager_name", "manager_photo", "max_discount_sem_pin",
    },
    required_on_create={
        "workshop_name", "cnpj", "phone_whatsapp",
        "address_street", "address_city", "address_zip",
        "manager_name",
    },
)

# The PIN and the rate table have their own entry points
UPDATE_POLICY = ModelValidationPolicy(writable_fields=SETUP_POLICY.writable_fields)


class SetupError(Exception):
    """Raised when the workshop is not configured yet."""


def get_settings() -> SystemSettings | None:
    return db.session.get(SystemSettings, SETTINGS_ID)


def is_configured() -> bool:
    return get_settings() is not None


def require_settings() -> SystemSettings:
    settings = get_settings()
    if settings is None:
        raise SetupError("Workshop setup not completed")
    return settings


def _check_pin_pair(pin, pin_confirm) -> str:
    if pin != pin_confirm:
        raise ValidationError("PINs do not match")
    try:
        return pin_service.validate_pin_format(pin)
    except pin_service.PinValidationError as e:
        raise ValidationError(str(e))


def _check_discount_limit(patch: dict) -> None:
    limit = patch.get("max_discount_sem_pin")
    if limit is not None and not 0 <= limit <= 100:
        raise ValidationError("max_discount_sem_pin must be between 0 and 100")


def setup_workshop(data: dict, pin, pin_confirm) -> SystemSettings:
    """
    One-time setup: workshop identity, address, manager and PIN.

    Raises ConflictError when the workshop is already configured.
    """
    if is_configured():
        raise ConflictError("Workshop already configured")

    patch = validate_payload(model=SystemSettings, payload=data, policy=SETUP_POLICY, partial=False)
    _check_discount_limit(patch)
    pin = _check_pin_pair(pin, pin_confirm)

    settings = SystemSettings(id=SETTINGS_ID, pin_hash=pin_service.hash_pin(pin))
    for key, value in patch.items():
        setattr(settings, key, value)
    if settings.max_discount_sem_pin is None:
        settings.max_discount_sem_pin = DISCOUNT_AUTH_THRESHOLD_PERCENT

    db.session.add(settings)
    db.session.commit()
    logger.info("Workshop %r configured", settings.workshop_name)
    return settings


def update_settings(data: dict) -> SystemSettings:
    settings = require_settings()
    patch = validate_payload(model=SystemSettings, payload=data, policy=UPDATE_POLICY, partial=True)
    _check_discount_limit(patch)
    for key, value in patch.items():
        setattr(settings, key, value)
    db.session.commit()
    return settings


def change_manager_pin(current_pin, new_pin, new_pin_confirm) -> None:
    """Replace the manager PIN; the current PIN goes through the lockout like any entry."""
    settings = require_settings()
    if not pin_service.verify_manager_pin(current_pin, action="CHANGE_PIN"):
        raise pin_service.AuthorizationError("Invalid PIN")
    new_pin = _check_pin_pair(new_pin, new_pin_confirm)
    settings.pin_hash = pin_service.hash_pin(new_pin)
    db.session.commit()
    logger.info("Manager PIN changed")


def get_installment_rates() -> dict[int, float]:
    """Configured credit card rate table merged over the built-in one."""
    rates = dict(DEFAULT_INSTALLMENT_RATES)
    settings = get_settings()
    if settings is not None and settings.installment_rates:
        for key, value in settings.installment_rates.items():
            rates[int(key)] = float(value)
    return rates


def set_installment_rates(rates: dict) -> dict[int, float]:
    if not isinstance(rates, dict):
        raise ValidationError("installment_rates must be an object")

    cleaned: dict[str, float] = {}
    for key, value in rates.items():
        try:
            n = int(key)
            rate = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid rate entry: {key!r}")
        if not MIN_INSTALLMENTS <= n <= MAX_INSTALLMENTS:
            raise ValidationError(f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}")
        if rate < 0:
            raise ValidationError("Interest rates must be >= 0")
        cleaned[str(n)] = rate

    settings = require_settings()
    settings.installment_rates = cleaned or None
    db.session.commit()
    return get_installment_rates()


def discount_threshold_percent(use_configured_limit: bool = False) -> float:
    """
    Percent of the subtotal above which a discount needs the manager.

    The fixed 5% rule applies unless use_configured_limit is set, in which
    case the workshop's max_discount_sem_pin is used.
    """
    if use_configured_limit:
        settings = get_settings()
        if settings is not None and settings.max_discount_sem_pin is not None:
            return float(settings.max_discount_sem_pin)
    return DISCOUNT_AUTH_THRESHOLD_PERCENT
