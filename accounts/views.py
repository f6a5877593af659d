import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.exceptions import NoRewardsAvailable
from accounts.serializers import RegisterSerializer, UserSerializer
from accounts.services import ReferralService

logger = logging.getLogger(__name__)


class RegisterView(APIView):
    """
    POST /api/users/register — Create an account.

    Request body: {"username", "password", "email"?, "role"?, "phone"?,
    "address"?, "referralByCode"?}
    """

    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = ReferralService.register(
            username=data["username"],
            email=data["email"],
            password=data["password"],
            role=data["role"],
            referral_code=data["referralByCode"] or None,
            phone=data["phone"],
            address=data["address"],
        )
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


class ReferralStatsView(APIView):
    """GET /api/users/referrals — Referral code, rewards and invited users."""

    def get(self, request, *args, **kwargs):
        request.user.refresh_from_db(fields=["referral_rewards"])
        return Response(ReferralService.referral_stats(request.user))


class ConvertRewardsView(APIView):
    """POST /api/users/referrals/convert — Move reward points into the wallet."""

    def post(self, request, *args, **kwargs):
        try:
            balance = ReferralService.convert_rewards(request.user.pk)
        except NoRewardsAvailable as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                "message": "Successfully converted rewards to wallet cash",
                "walletBalance": balance,
                "referralRewards": 0,
            },
            status=status.HTTP_200_OK,
        )
