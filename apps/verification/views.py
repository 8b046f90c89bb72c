"""API views for one-time codes."""

from __future__ import annotations

from rest_framework import permissions, status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from .serializers import IssueCodeSerializer, VerifyCodeSerializer
from .services import get_otp_issuer


def _subject(request, data) -> str:
    # Customers can only request codes for their own address
    return data.get("email") if request.user.is_staff and data.get("email") else request.user.email


class IssueCodeView(APIView):
    """Send a fresh confirmation code to the caller's e-mail address."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):  # type: ignore
        serializer = IssueCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        issuer = get_otp_issuer()
        issuer.issue(_subject(request, serializer.validated_data))
        return Response(
            {"detail": "Code sent.", "expires_in": int(issuer.ttl.total_seconds())},
            status=status.HTTP_202_ACCEPTED,
        )


class VerifyCodeView(APIView):
    """Check a code without confirming anything; consumes it when accepted."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):  # type: ignore
        serializer = VerifyCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = get_otp_issuer().verify(
            _subject(request, serializer.validated_data),
            serializer.validated_data["code"],
        )
        if result.accepted:
            return Response({"accepted": True}, status=status.HTTP_200_OK)
        return Response(
            {"accepted": False, "code": result.reason.value},
            status=status.HTTP_400_BAD_REQUEST,
        )
