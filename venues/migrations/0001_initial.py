import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import venues.models


DELIVERY_STATUS_CHOICES = [
    ('pending', 'Pending'),
    ('sending', 'Sending'),
    ('sent', 'Sent'),
    ('delivered', 'Delivered'),
    ('delayed', 'Delayed'),
    ('bounced', 'Bounced'),
    ('complained', 'Complained'),
    ('failed', 'Failed'),
]


def delivery_tracking_fields():
    return [
        ('email_status', models.CharField(choices=DELIVERY_STATUS_CHOICES, default='pending', max_length=20)),
        ('email_error', models.TextField(blank=True)),
        ('provider_message_id', models.CharField(blank=True, max_length=120, null=True, unique=True)),
        ('sent_at', models.DateTimeField(blank=True, null=True)),
        ('delivered_at', models.DateTimeField(blank=True, null=True)),
        ('opened_at', models.DateTimeField(blank=True, null=True)),
        ('clicked_at', models.DateTimeField(blank=True, null=True)),
        ('bounced_at', models.DateTimeField(blank=True, null=True)),
        ('complained_at', models.DateTimeField(blank=True, null=True)),
        ('open_count', models.PositiveIntegerField(default=0)),
        ('click_count', models.PositiveIntegerField(default=0)),
        ('bounce_type', models.CharField(blank=True, max_length=40)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Venue',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=200)),
                ('slug', models.SlugField(max_length=220, unique=True)),
                ('description', models.TextField(blank=True)),
                ('address', models.CharField(blank=True, max_length=300)),
                ('district', models.CharField(blank=True, max_length=120, null=True)),
                ('venue_type', models.CharField(blank=True, max_length=80)),
                ('venue_types', models.JSONField(blank=True, default=venues.models.empty_list)),
                ('capacity_seated', models.PositiveIntegerField(blank=True, null=True)),
                ('capacity_standing', models.PositiveIntegerField(blank=True, null=True)),
                ('contact_email', models.EmailField(blank=True, max_length=254)),
                ('status', models.CharField(choices=[('pending', 'Pending review'), ('published', 'Published'), ('active', 'Active'), ('hidden', 'Hidden'), ('removed', 'Removed')], default='pending', max_length=20)),
                ('priority', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='subvenues', to='venues.venue')),
            ],
            options={
                'ordering': ('name',),
                'indexes': [models.Index(fields=['status', 'priority'], name='venue_status_priority_idx')],
            },
        ),
        migrations.CreateModel(
            name='HomepageSlot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveSmallIntegerField(unique=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('venue', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='homepage_slot', to='venues.venue')),
            ],
            options={'ordering': ('position',)},
        ),
        migrations.CreateModel(
            name='VenueBroadcast',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('event_type', models.CharField(blank=True, max_length=80)),
                ('event_date', models.DateField(blank=True, null=True)),
                ('guest_count', models.PositiveIntegerField(blank=True, null=True)),
                ('budget_range', models.CharField(blank=True, max_length=80)),
                ('location_preference', models.CharField(blank=True, max_length=120, null=True)),
                ('requirements', models.TextField(blank=True)),
                ('contact_name', models.CharField(max_length=120)),
                ('contact_email', models.EmailField(max_length=254)),
                ('contact_phone', models.CharField(blank=True, max_length=32)),
                ('sent_venues', models.JSONField(blank=True, default=venues.models.empty_list)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('partial', 'Partially sent'), ('completed', 'Completed')], default='pending', max_length=20)),
                ('sent_count', models.PositiveIntegerField(default=0)),
                ('last_sent_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={'ordering': ('-created_at',)},
        ),
        migrations.CreateModel(
            name='VenueBroadcastLog',
            fields=[
                *delivery_tracking_fields(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('broadcast', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='logs', to='venues.venuebroadcast')),
                ('venue', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='broadcast_logs', to='venues.venue')),
            ],
            options={
                'ordering': ('-created_at',),
                'indexes': [models.Index(fields=['broadcast', 'email_status'], name='broadcastlog_status_idx')],
                'constraints': [models.UniqueConstraint(fields=('broadcast', 'venue'), name='unique_broadcast_venue')],
            },
        ),
        migrations.CreateModel(
            name='EmailFlowLog',
            fields=[
                *delivery_tracking_fields(),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('email_type', models.CharField(max_length=80)),
                ('recipient', models.CharField(max_length=254)),
                ('subject', models.CharField(blank=True, max_length=300)),
                ('recipient_type', models.CharField(blank=True, max_length=40)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('broadcast', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='email_flow_logs', to='venues.venuebroadcast')),
                ('sent_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='email_flow_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={'ordering': ('-created_at',)},
        ),
    ]
