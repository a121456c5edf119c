import logging

from django.db import IntegrityError, transaction
from django.db.models import ProtectedError
from rest_framework import status, viewsets
from rest_framework.decorators import api_view, permission_classes, action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView
from django_filters.rest_framework import DjangoFilterBackend

from . import analytics, services
from .models import Device, Bill
from .serializers import (
    UserSerializer, RegisterSerializer, EmailTokenObtainPairSerializer, DeviceSerializer, BillSerializer,
    ConsumptionReadingSerializer, ConsumptionRecordSerializer, ProbabilityQuerySerializer,
)


"""
Django REST Framework (DRF) view layer for the bill tracker.

Purpose:
- Registration and current-user endpoints (JWT issuance itself is simplejwt).
- Owner-scoped CRUD for devices and bills.
- Dashboard endpoints that fetch the user's bills and hand them to the
  analytics engine.
- The unauthenticated IoT ingestion endpoint used by device firmware.
- The /health endpoint for quick liveness checks.
"""

logger = logging.getLogger(__name__)

READINGS_LIMIT = 168  # one week of hourly readings
CODE_ATTEMPTS = 2


@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    return Response({"status": "ok"})


# --- Auth ---

def token_pair(user):
    refresh = RefreshToken.for_user(user)
    return {"refresh": str(refresh), "access": str(refresh.access_token)}


@api_view(["POST"])
@permission_classes([AllowAny])
def register(request):
    serializer = RegisterSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    user = serializer.save()
    logger.info("Registered user %s", user.pk)
    return Response(
        {"user": UserSerializer(user).data, "token": token_pair(user)},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def me(request):
    return Response({"user": UserSerializer(request.user).data})


class LoginView(TokenObtainPairView):
    serializer_class = EmailTokenObtainPairSerializer


# Base viewset: filters enabled, everything scoped to the requesting user
class OwnedViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]

    def get_queryset(self):
        return self.queryset.filter(owner=self.request.user)


class DeviceViewSet(OwnedViewSet):
    queryset = Device.objects.all()
    serializer_class = DeviceSerializer
    filterset_fields = ["identification_code"]

    def perform_create(self, serializer):
        # Codes are unique across users; regenerate once if a concurrent create took ours
        for attempt in range(1, CODE_ATTEMPTS + 1):
            code = services.next_identification_code(self.request.user)
            try:
                with transaction.atomic():
                    serializer.save(owner=self.request.user, identification_code=code)
                return
            except IntegrityError:
                if attempt == CODE_ATTEMPTS:
                    raise
                logger.warning("Device code %s taken while saving, regenerating", code)

    def destroy(self, request, *args, **kwargs):
        try:
            return super().destroy(request, *args, **kwargs)
        except ProtectedError:
            return Response({"error": "Device still has bills."}, status=status.HTTP_409_CONFLICT)

    @action(detail=True, methods=["get"])
    def readings(self, request, pk=None):
        device = self.get_object()
        readings = device.readings.select_related("device").order_by("-recorded_at")[:READINGS_LIMIT]
        return Response(ConsumptionReadingSerializer(readings, many=True).data)


class BillViewSet(OwnedViewSet):
    queryset = Bill.objects.select_related("device")
    serializer_class = BillSerializer
    filterset_fields = ["device", "month_year"]

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)


class DashboardViewSet(viewsets.ViewSet):
    """Read-only analytics over the requesting user's bills."""
    permission_classes = [IsAuthenticated]

    def list(self, request):
        bills = (Bill.objects
                 .filter(owner=request.user)
                 .select_related("device")
                 .order_by("month_year", "id"))
        return Response({"bills": BillSerializer(bills, many=True).data})

    @action(detail=False, methods=["get"])
    def analytics(self, request):
        records = services.fetch_bill_records(request.user)
        return Response(analytics.compute_analytics(records))

    @action(detail=False, methods=["get"])
    def summary(self, request):
        records = services.fetch_bill_records(request.user)
        return Response(analytics.payment_summary(records))

    @action(detail=False, methods=["get"])
    def probability(self, request):
        query = ProbabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        records = services.fetch_bill_records(request.user)
        probability = analytics.compute_probability(
            records, query.validated_data["min"], query.validated_data["max"]
        )
        return Response({"probability": probability})


# --- IoT ingestion ---

@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def record_consumption(request):
    # Firmware sends either a JSON body or a query string; `consumo` is the old key
    source = request.data if request.data else request.query_params
    payload = {
        "disp_id": source.get("disp_id"),
        "consumo_wh": source.get("consumo_wh", source.get("consumo")),
    }
    serializer = ConsumptionRecordSerializer(data=payload)
    serializer.is_valid(raise_exception=True)

    code = serializer.validated_data["disp_id"]
    try:
        services.record_consumption(code, serializer.validated_data["consumo_wh"])
    except Device.DoesNotExist:
        logger.warning("Consumption pushed for unknown device code %r", code)
        return Response({"error": "Device not registered."}, status=status.HTTP_404_NOT_FOUND)
    return Response({"status": "Consumption recorded."})
