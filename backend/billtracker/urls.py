from django.urls import path, include
from django.contrib import admin

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("api.urls")),  # DRF routes, auth and IoT ingestion
    path("api-auth/", include("rest_framework.urls"))  # enables Login in browsable API
]
