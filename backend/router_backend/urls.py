from django.urls import path, include
from rest_framework.routers import DefaultRouter
from directions.views import HealthView, RouteView, ShardViewSet

router = DefaultRouter()
router.register(r'shards', ShardViewSet, basename='shard')

urlpatterns = [
    path('route/v1/<str:profile>/<str:coordinates>', RouteView.as_view(), name='route'),
    path('health', HealthView.as_view(), name='health'),
    path('', include(router.urls)),
]
