"""
Add celery-beat schedules for the settlement workers.

- Release matured funds every 15 minutes
- Poll stale pending transactions every 10 minutes
- Audit seller balances daily at 03:00
"""

from django.db import migrations

INTERVAL_TASKS = [
    (
        "Release Matured Seller Funds",
        "settlement.workers.maturation.release_matured_funds",
        15,
        "Moves sub-order payments past their hold period from pending to available.",
    ),
    (
        "Poll Pending Transactions",
        "settlement.workers.transaction_poller.poll_pending_transactions",
        10,
        "Syncs stale pending transactions with the payment gateway.",
    ),
]

AUDIT_TASK_NAME = "Verify Seller Balances"


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, minutes, description in INTERVAL_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(every=minutes, period="minutes")
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )

    crontab, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )
    PeriodicTask.objects.get_or_create(
        name=AUDIT_TASK_NAME,
        defaults={
            "task": "settlement.workers.balance_audit.verify_seller_balances",
            "crontab": crontab,
            "enabled": True,
            "description": "Recomputes every seller balance and reports mismatches.",
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    names = [name for name, *_ in INTERVAL_TASKS] + [AUDIT_TASK_NAME]
    PeriodicTask.objects.filter(name__in=names).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlement", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
