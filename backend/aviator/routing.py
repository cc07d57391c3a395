from django.urls import path
from .consumers import AviatorConsumer

websocket_urlpatterns = [
    path("ws/aviator/<str:table>/", AviatorConsumer.as_asgi()),
]
