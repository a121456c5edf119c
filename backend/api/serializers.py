import math
from datetime import date

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import Device, Bill, ConsumptionReading

"""
DRF serializer definitions for the bill tracker.

Purpose:
- Maps Device, Bill and ConsumptionReading to JSON for API responses.
- Validates request payloads: bill periods, positive amounts, device ownership,
  registration data and the probability query bounds.

Numeric fields are rendered as JSON numbers (COERCE_DECIMAL_TO_STRING is off
in settings) so the dashboard can chart them directly.
"""

User = get_user_model()


class MonthYearField(serializers.Field):
    """Accepts 'YYYY-MM' (or a full ISO date) and stores the first day of that month."""

    default_error_messages = {
        "invalid": "Enter a month as YYYY-MM.",
    }

    def to_internal_value(self, data):
        raw = str(data or "").strip()[:7]
        try:
            year, month = (int(part) for part in raw.split("-"))
            return date(year, month, 1)
        except ValueError:
            self.fail("invalid")

    def to_representation(self, value):
        return value.strftime("%Y-%m")


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source="first_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "email", "full_name"]


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=6)
    full_name = serializers.CharField(max_length=100)

    def validate_email(self, value):
        value = value.lower()
        if User.objects.filter(username=value).exists():
            raise serializers.ValidationError("User already exists")
        return value

    def create(self, validated_data):
        return User.objects.create_user(
            username=validated_data["email"],
            email=validated_data["email"],
            password=validated_data["password"],
            first_name=validated_data["full_name"].strip(),
        )


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Usernames are stored lowercased (see RegisterSerializer); match that on login."""

    def validate(self, attrs):
        attrs[self.username_field] = attrs[self.username_field].strip().lower()
        return super().validate(attrs)


class DeviceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Device
        fields = ["id", "name", "identification_code", "property_address", "measured_consumption_kwh"]
        read_only_fields = ["identification_code", "measured_consumption_kwh"]


class DeviceRefSerializer(serializers.ModelSerializer):
    class Meta:
        model = Device
        fields = ["id", "name", "identification_code"]


class BillSerializer(serializers.ModelSerializer):
    device_id = serializers.PrimaryKeyRelatedField(source="device", queryset=Device.objects.none())
    device = DeviceRefSerializer(read_only=True)
    month_year = MonthYearField()

    class Meta:
        model = Bill
        fields = [
            "id", "device_id", "month_year", "company_consumption_kwh",
            "measured_consumption_kwh", "amount_paid", "price_per_kwh", "device",
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Only the requesting user's devices can be attached to a bill
        request = self.context.get("request")
        if request is not None and request.user.is_authenticated:
            self.fields["device_id"].queryset = Device.objects.filter(owner=request.user)

    def validate_amount_paid(self, value):
        if value <= 0:
            raise serializers.ValidationError("amount_paid must be greater than zero.")
        return value

    def validate_price_per_kwh(self, value):
        if value <= 0:
            raise serializers.ValidationError("price_per_kwh must be greater than zero.")
        return value


class ConsumptionReadingSerializer(serializers.ModelSerializer):
    device_code = serializers.CharField(source="device.identification_code", read_only=True)

    class Meta:
        model = ConsumptionReading
        fields = ["id", "device_code", "consumption_wh", "recorded_at"]


class ConsumptionRecordSerializer(serializers.Serializer):
    """Payload pushed by the device firmware (body or query string)."""
    disp_id = serializers.CharField()
    consumo_wh = serializers.FloatField(min_value=0)


class ProbabilityQuerySerializer(serializers.Serializer):
    min = serializers.FloatField()
    max = serializers.FloatField()

    def validate(self, attrs):
        if not (math.isfinite(attrs["min"]) and math.isfinite(attrs["max"])):
            raise serializers.ValidationError("min and max must be finite numbers.")
        if attrs["min"] >= attrs["max"]:
            raise serializers.ValidationError("min must be lower than max.")
        return attrs
