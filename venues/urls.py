from django.urls import path

from . import views

urlpatterns = [
    path('api/venues/page/', views.VenuePageView.as_view(), name='venue-page'),
    path('api/quick-requests/', views.QuickRequestView.as_view(), name='quick-request'),
    path('api/broadcasts/backfill/', views.BroadcastBackfillView.as_view(), name='broadcast-backfill'),
    path('api/broadcasts/tracking/', views.BroadcastTrackingView.as_view(), name='broadcast-tracking'),
    path(
        'api/broadcasts/tracking/export/',
        views.BroadcastTrackingExportView.as_view(),
        name='broadcast-tracking-export',
    ),
    path('api/broadcasts/<uuid:broadcast_id>/', views.BroadcastDetailView.as_view(), name='broadcast-detail'),
    path('api/broadcasts/<uuid:broadcast_id>/send/', views.BroadcastSendView.as_view(), name='broadcast-send'),
    path(
        'api/broadcasts/<uuid:broadcast_id>/resend-failed/',
        views.BroadcastResendFailedView.as_view(),
        name='broadcast-resend-failed',
    ),
    path('webhooks/resend/', views.ResendWebhookView.as_view(), name='resend-webhook'),
]
