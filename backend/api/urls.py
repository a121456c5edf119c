from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView
from .views import (
    health, register, me, record_consumption, LoginView,
    DeviceViewSet, BillViewSet, DashboardViewSet,
)

"""
URL router configuration for the bill tracker API.

Purpose:
- Registers REST endpoints for devices, bills and the dashboard analytics.
- Keeps the Portuguese `dispositivos` alias used by older device sketches.
- Exposes auth (register, JWT create/refresh, me), IoT ingestion and /health.
"""

router = DefaultRouter()
router.register(r"devices", DeviceViewSet, basename="device")
router.register(r"dispositivos", DeviceViewSet, basename="dispositivo")
router.register(r"bills", BillViewSet, basename="bill")
router.register(r"dashboard", DashboardViewSet, basename="dashboard")

urlpatterns = [
    path("health", health, name="health"),
    path("auth/register", register, name="register"),
    path("auth/me", me, name="me"),
    path("auth/jwt/create", LoginView.as_view(), name="jwt-create"),
    path("auth/jwt/refresh", TokenRefreshView.as_view(), name="jwt-refresh"),
    path("consumption/record", record_consumption, name="consumption-record"),
    path("", include(router.urls)),
]
