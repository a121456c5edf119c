from django.contrib import admin
from .models import Device, Bill, ConsumptionReading

admin.site.site_header = "Bill Tracker Admin"

@admin.register(Device)
class DeviceAdmin(admin.ModelAdmin):
    list_display = ['identification_code', 'name', 'owner', 'property_address', 'measured_consumption_kwh']
    list_filter = ['owner']
    search_fields = ['identification_code', 'name', 'property_address', 'owner__username']

@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = ['device', 'month_year', 'company_consumption_kwh', 'measured_consumption_kwh',
                    'amount_paid', 'price_per_kwh', 'owner']
    list_filter = ['owner', 'device']
    search_fields = ['device__identification_code', 'device__name']
    autocomplete_fields = ['device']
    date_hierarchy = 'month_year'

@admin.register(ConsumptionReading)
class ConsumptionReadingAdmin(admin.ModelAdmin):
    list_display = ['device', 'recorded_at', 'consumption_wh']
    list_filter = ['device']
    search_fields = ['device__identification_code']
    date_hierarchy = 'recorded_at'
