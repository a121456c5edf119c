from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

"""
Core data model for the bill tracker.

Purpose:
- Defines database schema for Devices, Bills and ConsumptionReadings.
- Encodes business rules such as:
    • Every device and bill belongs to one user (the owner).
    • Devices carry a unique identification code (REL001, REL002, ...) used by
      the IoT firmware to push readings.
    • Bills cover one calendar month; the measured consumption is optional and
      falls back to the device's rolled-up value.
    • ConsumptionReadings store hourly Wh values pushed by devices.

The analytics engine never reads these models directly; services.py converts
bills into plain BillRecord values first.
"""

class Device(models.Model):
    """
    A monitored metering point (smart meter) at a property.
    - identification_code -> code flashed on the device, unique across users.
    - measured_consumption_kwh -> last roll-up of IoT readings, copied into new bills.
    """
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="devices")
    name = models.CharField(max_length=100)
    identification_code = models.CharField(max_length=100, unique=True)
    property_address = models.CharField(max_length=200)
    measured_consumption_kwh = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["owner"], name="device_owner_idx"),
        ]

    def __str__(self):
        return f"{self.name} [{self.identification_code}]"


class Bill(models.Model):
    """
    One billing period for a device.
    - month_year -> stored as the first day of the month.
    - company_consumption_kwh -> what the utility reports.
    - measured_consumption_kwh -> what the device measured (source field `consumo_iot`).
    """
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="bills")
    device = models.ForeignKey(Device, on_delete=models.PROTECT, related_name="bills")
    month_year = models.DateField(help_text="First day of the billed month.")
    company_consumption_kwh = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    measured_consumption_kwh = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2,
                                      validators=[MinValueValidator(0)])
    price_per_kwh = models.DecimalField(max_digits=10, decimal_places=4,
                                        validators=[MinValueValidator(0)])

    class Meta:
        ordering = ["-month_year", "-id"]
        indexes = [
            models.Index(fields=["owner", "month_year"], name="bill_owner_month_idx"),
            models.Index(fields=["device"], name="bill_device_idx"),
        ]

    def clean(self):
        if self.device_id and self.owner_id and self.device.owner_id != self.owner_id:
            raise ValidationError("Device not found or not owned by user.")
        if self.month_year and self.month_year.day != 1:
            self.month_year = self.month_year.replace(day=1)

    def save(self, *args, **kwargs):
        # Bills logged without a reading inherit the device roll-up
        if self._state.adding and self.measured_consumption_kwh is None and self.device_id:
            self.measured_consumption_kwh = self.device.measured_consumption_kwh
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.device.identification_code} @ {self.month_year:%Y-%m} = {self.amount_paid}"


class ConsumptionReading(models.Model):
    """
    Hourly energy reading pushed by a device (Wh accumulated over the period).
    """
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name="readings")
    consumption_wh = models.FloatField(validators=[MinValueValidator(0)])
    recorded_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=["device", "recorded_at"], name="reading_device_ts_idx"),
        ]

    def __str__(self):
        return f"{self.device.identification_code} @ {self.recorded_at} = {self.consumption_wh} Wh"
