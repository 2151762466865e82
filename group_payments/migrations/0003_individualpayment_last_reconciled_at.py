from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("group_payments", "0002_add_deadline_check_schedule"),
    ]

    operations = [
        migrations.AddField(
            model_name="individualpayment",
            name="last_reconciled_at",
            field=models.DateTimeField(
                blank=True,
                help_text="Last time reconciliation asked the gateway about this share",
                null=True,
            ),
        ),
    ]
