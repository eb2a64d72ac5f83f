"""API views for venue listings, quick requests and broadcast delivery."""
from __future__ import annotations

import csv
import io
import logging

from django.conf import settings
from django.db import DatabaseError
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import VenueBroadcast
from .rotation import VenueRanking
from .serializers import (
    BackfillRequestSerializer,
    BroadcastDeltaSerializer,
    BroadcastSendSerializer,
    EmailFlowLogSerializer,
    QuickRequestSerializer,
    TrackingQuerySerializer,
    VenueBroadcastLogSerializer,
    VenueBroadcastSerializer,
    VenueListSerializer,
    VenuePageQuerySerializer,
)
from .services import (
    BroadcastBackfill,
    BroadcastDelivery,
    BroadcastDispatcher,
    OperatorNotifier,
)
from .throttles import QuickRequestRateThrottle
from .tracking import DeliveryReconciler, WebhookError, build_tracking_report

LOGGER = logging.getLogger(__name__)

SIGNATURE_HEADER = 'Svix-Signature'


class VenuePageView(APIView):
    permission_classes = [AllowAny]
    ranking_class = VenueRanking

    def get(self, request):
        query = VenuePageQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        page = self.ranking_class().page(
            query.to_filters(),
            page_size=query.validated_data['page_size'],
            offset=query.validated_data['offset'],
        )
        return Response(
            {
                'results': VenueListSerializer(page.items, many=True).data,
                'total_count': page.total_count,
                'has_more': page.has_more,
                'offset': query.validated_data['offset'],
                'page_size': query.validated_data['page_size'],
            }
        )


class QuickRequestView(APIView):
    permission_classes = [AllowAny]
    throttle_classes = [QuickRequestRateThrottle]
    dispatcher_class = BroadcastDispatcher

    def post(self, request):
        serializer = QuickRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        broadcast = self.dispatcher_class().dispatch(serializer.to_criteria())
        try:
            OperatorNotifier().notify(broadcast)
            if getattr(settings, 'BROADCAST_AUTO_SEND', False):
                BroadcastDelivery(broadcast=broadcast).send_pending()
        except ValueError:
            LOGGER.exception('Follow-up for broadcast %s failed', broadcast.id)
        return Response(
            {
                'broadcast_id': str(broadcast.id),
                'title': broadcast.title,
                'venue_count': len(broadcast.sent_venues),
            },
            status=status.HTTP_201_CREATED,
        )


class BroadcastDetailView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, broadcast_id):
        broadcast = get_object_or_404(VenueBroadcast, id=broadcast_id)
        logs = broadcast.logs.select_related('venue').order_by('venue__name')
        emails = broadcast.email_flow_logs.order_by('-created_at')
        return Response(
            {
                **VenueBroadcastSerializer(broadcast).data,
                'logs': VenueBroadcastLogSerializer(logs, many=True).data,
                'emails': EmailFlowLogSerializer(emails, many=True).data,
            }
        )


class BroadcastSendView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, broadcast_id):
        broadcast = get_object_or_404(VenueBroadcast, id=broadcast_id)
        serializer = BroadcastSendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        venue_id = serializer.validated_data.get('venue_id')
        result = BroadcastDelivery(broadcast=broadcast, user=request.user).send_pending(
            venue_id=str(venue_id) if venue_id else None,
        )
        return Response({**result, 'status': broadcast.status, 'sent_count': broadcast.sent_count})


class BroadcastResendFailedView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, broadcast_id):
        broadcast = get_object_or_404(VenueBroadcast, id=broadcast_id)
        result = BroadcastDelivery(broadcast=broadcast, user=request.user).resend_failed()
        return Response({**result, 'status': broadcast.status, 'sent_count': broadcast.sent_count})


class BroadcastBackfillView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = BackfillRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dry_run = serializer.validated_data['dry_run']
        deltas = BroadcastBackfill().run(dry_run=dry_run)
        return Response(
            {
                'dry_run': dry_run,
                'changed': len([delta for delta in deltas if delta.error is None]),
                'failed': len([delta for delta in deltas if delta.error is not None]),
                'results': BroadcastDeltaSerializer(deltas, many=True).data,
            }
        )


class BroadcastTrackingView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        query = TrackingQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        broadcast_id = query.validated_data.get('broadcast_id')
        report = build_tracking_report(
            broadcast_id=str(broadcast_id) if broadcast_id else None,
            recent=query.validated_data['recent'],
        )
        return Response(report)


class BroadcastTrackingExportView(APIView):
    permission_classes = [IsAdminUser]
    columns = ('Title', 'Status', 'Sent', 'Delivered', 'Opened', 'Clicked', 'Bounced', 'Complained', 'Failed')

    def get(self, request):
        export_format = request.query_params.get('export', 'csv')
        rows = build_tracking_report(recent=0)['broadcasts']
        if export_format == 'pdf':
            buffer = io.BytesIO()
            pdf = canvas.Canvas(buffer, pagesize=A4)
            width, height = A4
            y = height - 50
            for row in rows:
                pdf.drawString(
                    40,
                    y,
                    f"{row['title']} | {row['status']} | sent {row['sent']} | delivered {row['delivered']}"
                    f" | opened {row['opened']} | bounced {row['bounced']}",
                )
                y -= 20
                if y < 50:
                    pdf.showPage()
                    y = height - 50
            pdf.save()
            buffer.seek(0)
            response = HttpResponse(buffer, content_type='application/pdf')
            response['Content-Disposition'] = 'attachment; filename=broadcast-tracking.pdf'
            return response
        if export_format == 'json':
            return Response(rows)
        stream = io.StringIO()
        writer = csv.writer(stream)
        writer.writerow(self.columns)
        for row in rows:
            writer.writerow([
                row['title'],
                row['status'],
                row['sent'],
                row['delivered'],
                row['opened'],
                row['clicked'],
                row['bounced'],
                row['complained'],
                row['failed'],
            ])
        response = HttpResponse(stream.getvalue(), content_type='text/csv')
        response['Content-Disposition'] = 'attachment; filename=broadcast-tracking.csv'
        return response


class ResendWebhookView(APIView):
    authentication_classes: list = []
    permission_classes = [AllowAny]
    throttle_classes: list = []

    def post(self, request):
        reconciler = DeliveryReconciler()
        try:
            result = reconciler.reconcile(request.body, request.headers.get(SIGNATURE_HEADER))
        except WebhookError as exc:
            return Response({'error': exc.detail}, status=exc.status_code)
        except DatabaseError:
            LOGGER.exception('Delivery webhook processing failed')
            return Response({'error': 'Processing failed'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({'received': True, 'matched': result.matched})
