import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Device",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("identification_code", models.CharField(max_length=100, unique=True)),
                ("property_address", models.CharField(max_length=200)),
                ("measured_consumption_kwh", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="devices", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [models.Index(fields=["owner"], name="device_owner_idx")],
            },
        ),
        migrations.CreateModel(
            name="Bill",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("month_year", models.DateField(help_text="First day of the billed month.")),
                ("company_consumption_kwh", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("measured_consumption_kwh", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("amount_paid", models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(0)])),
                ("price_per_kwh", models.DecimalField(decimal_places=4, max_digits=10, validators=[django.core.validators.MinValueValidator(0)])),
                ("device", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="bills", to="api.device")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bills", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-month_year", "-id"],
                "indexes": [
                    models.Index(fields=["owner", "month_year"], name="bill_owner_month_idx"),
                    models.Index(fields=["device"], name="bill_device_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ConsumptionReading",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("consumption_wh", models.FloatField(validators=[django.core.validators.MinValueValidator(0)])),
                ("recorded_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("device", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="readings", to="api.device")),
            ],
            options={
                "indexes": [models.Index(fields=["device", "recorded_at"], name="reading_device_ts_idx")],
            },
        ),
    ]
