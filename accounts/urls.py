from django.urls import path

from accounts.views import ConvertRewardsView, ReferralStatsView, RegisterView

urlpatterns = [
    path("register", RegisterView.as_view(), name="user-register"),
    path("referrals", ReferralStatsView.as_view(), name="user-referrals"),
    path(
        "referrals/convert",
        ConvertRewardsView.as_view(),
        name="user-referrals-convert",
    ),
]
