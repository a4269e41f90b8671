import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tasks', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='TaskActivity',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action_type', models.CharField(choices=[('created', 'Created'), ('updated', 'Updated'), ('status_changed', 'Status Changed'), ('escalated', 'Escalated'), ('rolled_back', 'Rolled Back'), ('progress_added', 'Progress Added')], db_index=True, max_length=20)),
                ('description', models.TextField()),
                ('field_name', models.CharField(blank=True, max_length=50, null=True)),
                ('old_value', models.TextField(blank=True, null=True)),
                ('new_value', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('task', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='activities', to='tasks.task')),
                ('user', models.ForeignKey(help_text='User who performed the action', on_delete=django.db.models.deletion.PROTECT, related_name='task_activities', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name_plural': 'task activities',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['task', '-created_at'], name='activity_task_created_idx'),
                    models.Index(fields=['user', '-created_at'], name='activity_user_created_idx'),
                    models.Index(fields=['action_type', '-created_at'], name='activity_action_created_idx'),
                ],
            },
        ),
    ]
