from django.urls import path
from . import views

urlpatterns = [
    path('', views.list_games, name='games_list'),
    path('history/', views.game_history, name='games_history'),
    path('coin-flip/', views.coin_flip, name='games_coin_flip'),
    path('dice-roll/', views.dice_roll, name='games_dice_roll'),
]
