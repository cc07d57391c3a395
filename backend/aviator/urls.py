from django.urls import path
from . import views

urlpatterns = [
    path("current-round/", views.current_round, name="aviator_current_round"),
    path("recent-rounds/", views.RecentRoundsView.as_view(), name="aviator_recent_rounds"),
    path("verify-round/", views.VerifyRoundView.as_view(), name="aviator_verify_round"),
    path("place-bet/", views.place_bet, name="aviator_place_bet"),
    path("cash-out/", views.cash_out, name="aviator_cash_out"),
    path("stats/", views.get_stats, name="aviator_stats"),
    path("history/", views.get_history, name="aviator_history"),
]
