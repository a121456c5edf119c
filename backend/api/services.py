import logging
import math
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

from .analytics import BillRecord, DeviceRef
from .models import Bill, ConsumptionReading, Device

"""
Service layer between the ORM and the analytics engine.

Purpose:
- Fetches a user's bills and converts them into BillRecord values. The user is
  always an explicit argument; nothing here reads request state.
- Generates device identification codes (REL001, REL002, ...).
- Records IoT consumption readings and rolls them up into device totals.
"""

logger = logging.getLogger(__name__)

CODE_PREFIX = "REL"
CODE_WIDTH = 3


def bill_to_record(bill):
    return BillRecord(
        id=bill.pk,
        device_id=bill.device_id,
        month_year=bill.month_year.strftime("%Y-%m") if bill.month_year else None,
        company_consumption_kwh=bill.company_consumption_kwh,
        measured_consumption_kwh=bill.measured_consumption_kwh,
        amount_paid=bill.amount_paid,
        price_per_kwh=bill.price_per_kwh,
        device=DeviceRef(id=bill.device.pk, name=bill.device.name) if bill.device_id else None,
    )


def fetch_bill_records(user):
    """Return the user's bills as BillRecords, oldest period first."""
    bills = (Bill.objects
             .filter(owner=user)
             .select_related("device")
             .order_by("month_year", "id"))
    records = [bill_to_record(b) for b in bills]
    logger.debug("Fetched %d bill records for user %s", len(records), user.pk)
    return records


def _code_number(code):
    digits = (code or "")[len(CODE_PREFIX):]
    try:
        return int(digits)
    except ValueError:
        return 0


def format_code(number):
    return f"{CODE_PREFIX}{number:0{CODE_WIDTH}d}"


def next_identification_code(user):
    """
    Next code after the user's most recent device. Codes are unique across all
    users, so skip ahead past any code already taken.
    """
    last = Device.objects.filter(owner=user).order_by("-id").first()
    number = _code_number(last.identification_code) + 1 if last else 1
    code = format_code(number)
    while Device.objects.filter(identification_code__iexact=code).exists():
        number += 1
        code = format_code(number)
    return code


def find_device_by_code(device_code):
    """Case-insensitive lookup ('rel001' matches 'REL001'). Raises Device.DoesNotExist."""
    return Device.objects.get(identification_code__iexact=(device_code or "").strip())


def record_consumption(device_code, consumption_wh):
    try:
        value = float(consumption_wh)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid consumption value: {consumption_wh!r}")
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Invalid or negative consumption value: {consumption_wh!r}")

    device = find_device_by_code(device_code)
    reading = ConsumptionReading.objects.create(device=device, consumption_wh=value)
    logger.info("Recorded %.3f Wh for device %s", value, device.identification_code)
    return reading


def rollup_device_consumption(device, since=None, until=None):
    """
    Sum the device's readings (Wh) into measured_consumption_kwh.
    Returns the new kWh total, or None when there are no readings in the window.
    """
    readings = device.readings.all()
    if since:
        readings = readings.filter(recorded_at__gte=since)
    if until:
        readings = readings.filter(recorded_at__lt=until)

    total_wh = readings.aggregate(total=Sum("consumption_wh"))["total"]
    if total_wh is None:
        return None

    kwh = (Decimal(str(total_wh)) / Decimal(1000)).quantize(Decimal("0.01"))
    with transaction.atomic():
        device.measured_consumption_kwh = kwh
        device.save(update_fields=["measured_consumption_kwh"])
    return kwh
