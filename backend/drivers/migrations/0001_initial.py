import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='DriverApplication',
            fields=[
                ('application_id', models.BigAutoField(primary_key=True, serialize=False)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('dob', models.DateField()),
                ('photo_face', models.CharField(blank=True, max_length=255)),
                ('citizenship_front', models.CharField(blank=True, max_length=255)),
                ('citizenship_back', models.CharField(blank=True, max_length=255)),
                ('citizenship_issue_date', models.DateField(blank=True, null=True)),
                ('citizenship_no', models.CharField(max_length=50)),
                ('pan_no', models.CharField(blank=True, max_length=50)),
                ('vehicle_type', models.CharField(max_length=50)),
                ('vehicle_brand', models.CharField(blank=True, max_length=100)),
                ('vehicle_model', models.CharField(blank=True, max_length=100)),
                ('vehicle_color', models.CharField(blank=True, max_length=50)),
                ('vehicle_year', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('plate_no', models.CharField(max_length=20)),
                ('vehicle_photo', models.CharField(blank=True, max_length=255)),
                ('license_no', models.CharField(max_length=50)),
                ('license_expiry', models.DateField(blank=True, null=True)),
                ('license_photo', models.CharField(blank=True, max_length=255)),
                ('billbook_pages', models.TextField(blank=True)),
                ('billbook_reg_page', models.CharField(blank=True, max_length=255)),
                ('billbook_renew_date', models.DateField(blank=True, null=True)),
                ('billbook_renew_page', models.CharField(blank=True, max_length=255)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='pending', max_length=10)),
                ('submitted_at', models.DateTimeField(auto_now_add=True)),
                ('decided_at', models.DateTimeField(blank=True, null=True)),
                ('decided_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='driver_applications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'driver_applications',
                'ordering': ['submitted_at'],
                'constraints': [models.UniqueConstraint(condition=models.Q(('status', 'pending')), fields=('user',), name='one_pending_application_per_user')],
            },
        ),
    ]
