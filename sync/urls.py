from django.urls import path

from sync.views import ChangeFeedView

urlpatterns = [
    path("changes/", ChangeFeedView.as_view(), name="change-feed"),
]
