import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('departments', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Task',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('description', models.TextField(help_text='What was worked on')),
                ('reference_id', models.CharField(blank=True, db_index=True, help_text='Optional external reference (service request id)', max_length=100, null=True)),
                ('remarks', models.TextField()),
                ('status', models.CharField(choices=[('in-progress', 'In Progress'), ('closed', 'Closed')], db_index=True, default='in-progress', max_length=15)),
                ('date', models.DateField(db_index=True, default=django.utils.timezone.localdate, help_text='Work date (distinct from creation time)')),
                ('tags', models.JSONField(blank=True, default=list)),
                ('attachments', models.JSONField(blank=True, default=list, help_text='File descriptors managed by the upload collaborator')),
                ('is_escalated', models.BooleanField(default=False)),
                ('escalated_at', models.DateTimeField(blank=True, null=True)),
                ('escalation_reason', models.TextField(blank=True, null=True)),
                ('closed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('version', models.PositiveIntegerField(default=1, editable=False)),
                ('created_by', models.ForeignKey(editable=False, on_delete=django.db.models.deletion.PROTECT, related_name='created_tasks', to=settings.AUTH_USER_MODEL)),
                ('department', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='tasks', to='departments.department')),
                ('escalated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='escalated_by_tasks', to=settings.AUTH_USER_MODEL)),
                ('escalated_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='escalated_to_tasks', to=settings.AUTH_USER_MODEL)),
                ('original_user', models.ForeignKey(blank=True, help_text='Owner before the active escalation', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='escalated_away_tasks', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(help_text='Current owner (delegate while escalated)', on_delete=django.db.models.deletion.PROTECT, related_name='owned_tasks', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'task',
                'verbose_name_plural': 'tasks',
                'ordering': ['-date', '-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'date'], name='task_user_date_idx'),
                    models.Index(fields=['department', 'date'], name='task_department_date_idx'),
                    models.Index(fields=['status', 'date'], name='task_status_date_idx'),
                    models.Index(fields=['escalated_to', 'is_escalated'], name='task_escalated_to_idx'),
                    models.Index(fields=['original_user', 'is_escalated'], name='task_original_user_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('closed_at__isnull', False), ('status', 'closed')),
                            models.Q(('closed_at__isnull', True), ('status', 'in-progress')),
                            _connector='OR',
                        ),
                        name='task_closed_at_matches_status',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ('escalated_at__isnull', False),
                                ('escalated_by__isnull', False),
                                ('escalated_to__isnull', False),
                                ('is_escalated', True),
                                ('original_user__isnull', False),
                            ),
                            models.Q(
                                ('escalated_at__isnull', True),
                                ('escalated_by__isnull', True),
                                ('escalated_to__isnull', True),
                                ('is_escalated', False),
                                ('original_user__isnull', True),
                            ),
                            _connector='OR',
                        ),
                        name='task_escalation_fields_consistent',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ('original_user__isnull', True),
                            models.Q(('original_user', models.F('user')), _negated=True),
                            _connector='OR',
                        ),
                        name='task_original_user_not_owner',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Progress',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField(default=django.utils.timezone.localdate)),
                ('description', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('task', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='progress_entries', to='tasks.task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='task_progress', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'progress entry',
                'verbose_name_plural': 'progress entries',
                'ordering': ['-date', '-created_at'],
                'indexes': [
                    models.Index(fields=['task', 'date'], name='progress_task_date_idx'),
                ],
            },
        ),
    ]
